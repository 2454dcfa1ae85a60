import nonebot

nonebot.init()
nonebot.load_plugin("nonebot_plugin_mcstatus")

if __name__ == "__main__":
    # uvicorn 在端口绑定失败时会记录原因并以状态码 1 退出
    nonebot.run()

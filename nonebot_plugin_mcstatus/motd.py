import re

COLOR_CODES = {
    "black": "0",
    "dark_blue": "1",
    "dark_green": "2",
    "dark_aqua": "3",
    "dark_red": "4",
    "dark_purple": "5",
    "gold": "6",
    "gray": "7",
    "dark_gray": "8",
    "blue": "9",
    "green": "a",
    "aqua": "b",
    "red": "c",
    "light_purple": "d",
    "yellow": "e",
    "white": "f",
}

STYLE_CODES = {
    "obfuscated": "k",
    "bold": "l",
    "strikethrough": "m",
    "underlined": "n",
    "italic": "o",
}

standard_color_map = {
    "black": ('<span style="color:#000000;">', "</span>"),
    "dark_blue": ('<span style="color:#0000AA;">', "</span>"),
    "dark_green": ('<span style="color:#00AA00;">', "</span>"),
    "dark_aqua": ('<span style="color:#00AAAA;">', "</span>"),
    "dark_red": ('<span style="color:#AA0000;">', "</span>"),
    "dark_purple": ('<span style="color:#AA00AA;">', "</span>"),
    "gold": ('<span style="color:#FFAA00;">', "</span>"),
    "gray": ('<span style="color:#AAAAAA;">', "</span>"),
    "dark_gray": ('<span style="color:#555555;">', "</span>"),
    "blue": ('<span style="color:#5555FF;">', "</span>"),
    "green": ('<span style="color:#55FF55;">', "</span>"),
    "aqua": ('<span style="color:#55FFFF;">', "</span>"),
    "red": ('<span style="color:#FF5555;">', "</span>"),
    "light_purple": ('<span style="color:#FF55FF;">', "</span>"),
    "yellow": ('<span style="color:#FFFF55;">', "</span>"),
    "white": ('<span style="color:#FFFFFF;">', "</span>"),
    "bold": ("<b>", "</b>"),
    "italic": ("<i>", "</i>"),
    "underlined": ("<u>", "</u>"),
    "strikethrough": ("<s>", "</s>"),
    "obfuscated": ("", ""),
    "§g": ('<span style="color:#DDD605;">', "</span>"),  # minecoin gold
    "§h": ('<span style="color:#E3D4D1;">', "</span>"),  # material quartz
    "§i": ('<span style="color:#CECACA;">', "</span>"),  # material iron
    "§j": ('<span style="color:#443A3B;">', "</span>"),  # material netherite
    "§p": ('<span style="color:#DEB12D;">', "</span>"),  # material gold
    "§q": ('<span style="color:#47A036;">', "</span>"),  # material emerald
    "§s": ('<span style="color:#2CBAA8;">', "</span>"),  # material diamond
    "§t": ('<span style="color:#21497B;">', "</span>"),  # material lapis
    "§u": ('<span style="color:#9A5CC6;">', "</span>"),  # material amethyst
}
for _name, _code in COLOR_CODES.items():
    standard_color_map[f"§{_code}"] = standard_color_map[_name]
for _name, _code in STYLE_CODES.items():
    standard_color_map[f"§{_code}"] = standard_color_map[_name]

RESET = "§r"


def motd_strip_formatting(raw_motd: str | dict | list) -> str:
    """
    去除 MOTD 中所有格式代码，支持 JSON 聊天组件以及旧版格式代码

    :param raw_motd: 原始 MOTD，可以是字符串、字典或列表
    """
    if isinstance(raw_motd, str):
        return re.sub(r"§.", "", raw_motd)
    if isinstance(raw_motd, list):
        return "".join(motd_strip_formatting(sub) for sub in raw_motd)
    if isinstance(raw_motd, dict):
        stripped_motd = motd_strip_formatting(raw_motd.get("text", ""))
        for sub in raw_motd.get("extra") or []:
            stripped_motd += motd_strip_formatting(sub)
        return stripped_motd
    return str(raw_motd)


def motd_to_legacy(raw_motd: str | dict | list, inherited: str = "") -> str:
    """
    将 JSON 聊天组件转换为带 § 格式代码的字符串

    子组件继承父组件的格式，每个组件结束后以 §r 复位再恢复父组件格式。
    十六进制颜色没有对应的格式代码，转换时会被丢弃。

    :param raw_motd: 原始 MOTD
    :param inherited: 父组件的格式代码
    """
    if isinstance(raw_motd, str):
        return raw_motd
    if isinstance(raw_motd, list):
        return "".join(motd_to_legacy(sub, inherited) for sub in raw_motd)
    if not isinstance(raw_motd, dict):
        return str(raw_motd)

    codes = inherited
    color = raw_motd.get("color", "")
    if color in COLOR_CODES:
        codes += f"§{COLOR_CODES[color]}"
    for style, code in STYLE_CODES.items():
        if raw_motd.get(style) is True:
            codes += f"§{code}"

    result = codes + str(raw_motd.get("text", ""))
    for sub in raw_motd.get("extra") or []:
        result += motd_to_legacy(sub, codes)
    if codes != inherited:
        result += RESET + inherited
    return result


def is_animated_motd(raw_motd: str) -> bool:
    """MOTD 是否由多行组成"""
    return len(raw_motd.splitlines()) > 1


def parse_motd2html(data: str | dict | list | None) -> str:
    """
    解析MOTD数据并转换为带有颜色的HTML字符串。

    :params data: MOTD数据。字符串按旧版格式代码处理，字典或列表按JSON聊天组件处理。

    :returns: HTML字符串。
    """
    if not data:
        return ""

    def parse_text_motd(text: str) -> str:
        result = ""
        i = 0
        styles = []
        while i < len(text):
            if text[i] == "§":
                style_code = text[i : i + 2].lower()
                if style_code == RESET:
                    # 关闭所有打开的样式
                    result += "".join(reversed(styles))
                    styles.clear()
                    i += 2
                    continue
                if style_code in standard_color_map:
                    open_tag, close_tag = standard_color_map[style_code]
                    styles.append(close_tag)
                    result += open_tag
                    i += 2
                    continue
            if text[i] == "\n":
                result += "<br>"
            else:
                result += text[i]
            i += 1

        # 在字符串末尾关闭所有打开的样式
        result += "".join(reversed(styles))
        return result

    def parse_json_motd(component) -> str:
        if isinstance(component, list):
            return "".join(parse_json_motd(item) for item in component)
        if not isinstance(component, dict):
            return parse_text_motd(str(component))

        color = component.get("color", "")
        if color.startswith("#"):
            hex_color = color[1:]
            if len(hex_color) == 3:
                hex_color = "".join([c * 2 for c in hex_color])
            open_tag, close_tag = (
                f'<span style="color:#{hex_color.upper()};">',
                "</span>",
            )
        else:
            open_tag, close_tag = standard_color_map.get(color, ("", ""))

        for style in ("bold", "italic", "underlined", "strikethrough"):
            if component.get(style) is True:
                open_tag_, close_tag_ = standard_color_map[style]
                open_tag += open_tag_
                close_tag = close_tag_ + close_tag

        inner = parse_text_motd(str(component.get("text", "")))
        inner += "".join(
            parse_json_motd(sub) for sub in component.get("extra") or []
        )
        return open_tag + inner + close_tag

    if isinstance(data, (dict, list)):
        return parse_json_motd(data)
    return parse_text_motd(str(data))

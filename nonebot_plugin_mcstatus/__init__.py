from datetime import datetime
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from nonebot import get_app, get_driver, logger
from nonebot.plugin import PluginMetadata

from .config import Config, config
from .configs import VERSION, readFile
from .limiter import RateLimiter
from .models import Edition
from .stats import CallCounter, JsonCallCounter
from .utils import get_status

__plugin_meta__ = PluginMetadata(
    name="MCStatus API",
    description="Minecraft服务器状态查询HTTP API，支持Java版与基岩版/Minecraft server status HTTP API for Java and Bedrock editions",  # noqa: E501
    type="application",
    config=Config,
    usage="""
    Minecraft服务器状态查询API
    用法：
        GET /3/[ip]:[端口]          Java 版
        GET /bedrock/3/[ip]:[端口]  基岩版
        GET /stats                  调用统计
    usage:
        GET /3/ip:port
        GET /bedrock/3/ip:port
        GET /stats
    """.strip(),
    extra={"version": VERSION},
)

RATE_LIMITED = {"error": "请求过于频繁，请稍后再试", "status": 429}

driver = get_driver()
app: FastAPI = get_app()
router = APIRouter()

limiter = RateLimiter(config.rate_limit_window_ms, config.rate_limit_max)
counter: CallCounter = JsonCallCounter(config.stats_file)
docs_page = readFile("templates/index.html")


def get_limiter() -> RateLimiter:
    return limiter


def get_counter() -> CallCounter:
    return counter


def client_address(request: Request) -> str:
    if config.trust_proxy and (forwarded := request.headers.get("x-forwarded-for")):
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "-"


async def lookup(
    address: str,
    edition: Edition,
    request: Request,
    limiter: RateLimiter,
    counter: CallCounter,
) -> JSONResponse:
    result = limiter.hit(client_address(request))
    if not result.allowed:
        return JSONResponse(RATE_LIMITED, status_code=429, headers=result.headers())

    logger.info(f"Received hostname: {address} ({edition})")
    report = await get_status(address, edition)
    counter.record(edition)
    return JSONResponse(report.to_json(), headers=result.headers())


@router.get("/3/{address}")
async def java_status(
    address: str,
    request: Request,
    limiter: RateLimiter = Depends(get_limiter),
    counter: CallCounter = Depends(get_counter),
):
    return await lookup(address, Edition.JAVA, request, limiter, counter)


@router.get("/bedrock/3/{address}")
async def bedrock_status(
    address: str,
    request: Request,
    limiter: RateLimiter = Depends(get_limiter),
    counter: CallCounter = Depends(get_counter),
):
    return await lookup(address, Edition.BEDROCK, request, limiter, counter)


@router.get("/stats")
async def call_stats(counter: CallCounter = Depends(get_counter)):
    return counter.snapshot()


@router.get("/", response_class=HTMLResponse)
async def docs():
    return docs_page


@app.middleware("http")
async def access_log(request: Request, call_next):
    response = await call_next(request)
    now = datetime.now(ZoneInfo(config.timezone)).strftime("%d/%b/%Y:%H:%M:%S %z")
    path = request.url.path + (f"?{request.url.query}" if request.url.query else "")
    logger.info(
        f'{client_address(request)} - - [{now}] "{request.method} {path} '
        f'HTTP/{request.scope.get("http_version", "1.1")}" {response.status_code} '
        f'{response.headers.get("content-length", "-")} '
        f'"{request.headers.get("referer", "-")}" "{request.headers.get("user-agent", "-")}"'
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_methods=["GET"],
    allow_headers=["*"],
)
app.include_router(router)

if config.log_file:
    logger.add(
        config.log_file,
        rotation=config.log_rotation,
        retention=config.log_retention,
        encoding="utf-8",
        level="INFO",
        filter=lambda record: (record["name"] or "").startswith(__name__),
    )


@driver.on_startup
async def _():
    logger.info("MC Status API starting...")
    logger.info(f"Using port: {driver.config.port}")

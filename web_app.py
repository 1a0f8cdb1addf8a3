# web_app.py
import logging
from contextlib import asynccontextmanager

import uvicorn
from aiogram import Bot, types
from aiogram.client.default import DefaultBotProperties
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# --- Наші модулі ---
from config_reader import config
from handlers import api_handlers, catalog_handlers
from models.exceptions import InvalidOrderError, OrderNotFoundError, UpstreamUnavailableError
from services import container

# --- Налаштування логування ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
)
logger = logging.getLogger("phone_market")


async def setup_webhook(bot: Bot) -> None:
    if not config.webhook_url:
        logger.warning("WEBHOOK_URL не вказано! Бот не зможе отримувати оновлення від Telegram.")
        return
    webhook_url = f"{config.webhook_url.rstrip('/')}{config.webhook_path}"
    current_webhook = await bot.get_webhook_info()
    if current_webhook.url != webhook_url:
        await bot.set_webhook(url=webhook_url)
        logger.info(f"Вебхук встановлено на {webhook_url}")
    else:
        logger.info(f"Вебхук вже встановлено на {webhook_url}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    bot = Bot(token=config.bot_token, default=DefaultBotProperties(parse_mode="HTML"))
    services = container.build_services(bot, config)
    dp = container.build_dispatcher(services)

    app.state.bot = bot
    app.state.dp = dp
    app.state.order_service = services.order_service
    app.state.payment_verifier = services.payment_verifier
    app.state.catalog = services.catalog
    app.state.rate_service = services.rate_service
    app.state.np_client = services.np_client
    app.state.admin_token = config.api_admin_token

    await container.start_background_jobs(services, config)
    await setup_webhook(bot)
    logger.info("Бот готовий до роботи і чекає на вебхуки...")
    try:
        yield
    finally:
        await container.shutdown(services)
        await bot.session.close()


app = FastAPI(title="Phone Marketplace API", version="1.0.0", lifespan=lifespan)
app.include_router(api_handlers.router)
app.include_router(catalog_handlers.router)


# --- Помилки у форматі {"success": false, "error": ...} ---

def _error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@app.exception_handler(InvalidOrderError)
async def invalid_order_handler(request: Request, exc: InvalidOrderError):
    return _error(400, str(exc))


@app.exception_handler(OrderNotFoundError)
async def order_not_found_handler(request: Request, exc: OrderNotFoundError):
    return _error(404, str(exc))


@app.exception_handler(UpstreamUnavailableError)
async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailableError):
    logger.error(f"Зовнішній сервіс недоступний ({request.url.path}): {exc}")
    return _error(503, str(exc))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


# --- Ендпоінти ---

@app.post(config.webhook_path, include_in_schema=False)
async def webhook_handler(request: Request):
    """Цей ендпоінт приймає оновлення від Telegram і передає їх в Aiogram."""
    bot: Bot = request.app.state.bot
    update = types.Update.model_validate(await request.json(), context={"bot": bot})
    await request.app.state.dp.feed_update(bot=bot, update=update)
    return Response(status_code=200)


@app.get("/")
async def index():
    return {
        "message": "Phone Marketplace API",
        "version": "1.0.0",
        "endpoints": {
            "GET /api/phones": "Отримати всі номери",
            "GET /api/phones/{id}": "Отримати номер за ID",
            "GET /api/phones/category/{category}": "Фільтр за категорією",
            "GET /api/phones/search/{query}": "Пошук номерів",
            "GET /api/ton-rate": "Курс TON",
            "POST /api/orders": "Створити замовлення",
            "GET /api/orders/{id}": "Статус замовлення",
            "GET /api/health": "Перевірка роботи",
        },
    }


def main():
    uvicorn.run(app, host=config.app_host, port=config.app_port)


if __name__ == "__main__":
    main()

import os

# config_reader створює Settings() при імпорті
os.environ.setdefault("BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("ADMIN_ID", "1000")
os.environ.setdefault("MIRROR_BACKEND", "none")

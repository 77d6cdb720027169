import os
from dotenv import load_dotenv

# Загрузка .env
load_dotenv()

# База данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///synterax_affiliate.db")

# Логирование
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Планировщик (секунды между проверками)
SCHEDULER_INTERVAL = int(os.getenv("SCHEDULER_INTERVAL", "900"))

# Выплаты on-chain: USDT (BEP-20) использует 18 знаков
PAYOUT_TOKEN_DECIMALS = int(os.getenv("PAYOUT_TOKEN_DECIMALS", "18"))
PAYOUT_VAULT_ADDRESS = os.getenv("PAYOUT_VAULT_ADDRESS")

# Администраторы, которым разрешено менять настройки комиссий
ADMINS = [int(x) for x in os.getenv("ADMINS", "").split(",") if x.strip()]

# Дефолтная нога для размещения новых партнёров
DEFAULT_PLACEMENT_LEG = os.getenv("DEFAULT_PLACEMENT_LEG", "left")

# Отчёты
CSV_DELIMITER = ";"

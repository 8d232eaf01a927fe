"""Domain constants and reference data used for seeding and validation."""

from enum import Enum
from typing import Dict, List, Set, Tuple


class SettingType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    JSON = "json"


ROLES: Set[str] = {"admin", "manager", "user"}
GOLD_KARATS: Set[int] = {18, 21, 22, 24}
BASE_CURRENCY = "USD"

# (name_ar, name_en, karat, purity, display_order)
GOLD_TYPES: List[Tuple[str, str, int, float, int]] = [
    ("ذهب عيار 24", "Gold 24K", 24, 0.9999, 1),
    ("ذهب عيار 22", "Gold 22K", 22, 0.9167, 2),
    ("ذهب عيار 21", "Gold 21K", 21, 0.8750, 3),
    ("ذهب عيار 18", "Gold 18K", 18, 0.7500, 4),
]

# (code, name_ar, name_en, symbol, flag_emoji, is_base, display_order)
CURRENCIES: List[Tuple[str, str, str, str, str, bool, int]] = [
    ("USD", "دولار أمريكي", "US Dollar", "$", "🇺🇸", True, 1),
    ("EUR", "يورو", "Euro", "€", "🇪🇺", False, 2),
    ("SAR", "ريال سعودي", "Saudi Riyal", "ر.س", "🇸🇦", False, 3),
    ("AED", "درهم إماراتي", "UAE Dirham", "د.إ", "🇦🇪", False, 4),
    ("KWD", "دينار كويتي", "Kuwaiti Dinar", "د.ك", "🇰🇼", False, 5),
    ("QAR", "ريال قطري", "Qatari Riyal", "ر.ق", "🇶🇦", False, 6),
    ("BHD", "دينار بحريني", "Bahraini Dinar", "د.ب", "🇧🇭", False, 7),
    ("OMR", "ريال عماني", "Omani Riyal", "ر.ع", "🇴🇲", False, 8),
    ("JOD", "دينار أردني", "Jordanian Dinar", "د.أ", "🇯🇴", False, 9),
    ("EGP", "جنيه مصري", "Egyptian Pound", "ج.م", "🇪🇬", False, 10),
]

# setting_key -> (raw value, type tag, description)
DEFAULT_SETTINGS: Dict[str, Tuple[str, str, str]] = {
    # Store info
    "store_name": ("مصنوعات الأميرة", "string", "Store name"),
    "store_name_en": ("Princess Gold", "string", "Store name (English)"),
    "store_address": ("الرياض، المملكة العربية السعودية", "string", "Store address"),
    "store_phone": ("+966 50 000 0000", "string", "Phone number"),
    "store_whatsapp": ("+966 50 000 0000", "string", "WhatsApp number"),
    "store_instagram": ("@princess.gold", "string", "Instagram account"),
    "store_facebook": ("PrincessGold", "string", "Facebook account"),
    # Market hours
    "market_open_time": ("08:00", "string", "Market opening time"),
    "market_close_time": ("22:00", "string", "Market closing time"),
    "market_timezone": ("Asia/Riyadh", "string", "Market timezone"),
    "market_days": ("1,2,3,4,5,6", "string", "Market working days (0=Sunday)"),
    # Margins
    "default_gold_margin_buy": ("0.02", "decimal", "Default gold buy margin"),
    "default_gold_margin_sell": ("0.02", "decimal", "Default gold sell margin"),
    "default_currency_margin_buy": ("0.015", "decimal", "Default currency buy margin"),
    "default_currency_margin_sell": ("0.015", "decimal", "Default currency sell margin"),
    # Security
    "session_timeout": ("3600", "integer", "Session timeout in seconds"),
    "max_login_attempts": ("5", "integer", "Maximum failed login attempts"),
    "lockout_duration": ("900", "integer", "Lockout duration in seconds"),
}

"""User-facing strings and model defaults."""

# App metadata
APP_TITLE = "oLegal"
APP_DESCRIPTION = (
    "oLegal - це AI-асистент для швидких юридичних порад. Запитайте в чаті - і отримайте "
    "пояснення українських законів разом із прикладами з відкритих джерел."
)

DEFAULT_MODEL_NAME = "gemini-2.5-flash"

DEFAULT_SYSTEM_INSTRUCTION = (
    "Ти oLegal, AI-асистент з питань українського права. Відповідай українською мовою, "
    "чітко та структуровано. Посилайся на конкретні статті законів і кодексів України, "
    "коли це можливо, та наводь приклади з відкритих джерел. Якщо питання виходить за "
    "межі юридичної тематики або інформації недостатньо, прямо скажи про це. Завжди "
    "нагадуй, що відповідь не замінює консультації кваліфікованого юриста."
)

INITIAL_GREETING_TEXT = (
    "Вітаю! Я oLegal, ваш AI-юридичний експерт. Сформулюйте ваше питання або опишіть "
    "ситуацію, і я допоможу вам її проаналізувати."
)

# Error messages
API_ERROR_MESSAGE = "Виникла помилка під час обробки вашого запиту. Будь ласка, спробуйте пізніше."
API_KEY_MISSING_MESSAGE = "API ключ не налаштовано. Будь ласка, перевірте конфігурацію."
CHAT_SESSION_ERROR = "Помилка ініціалізації чату. Будь ласка, оновіть сторінку."
RATE_LIMIT_MESSAGE = "Перевищено ліміт запитів до AI. Будь ласка, спробуйте трохи пізніше."
CONTENT_FILTERED_MESSAGE = (
    "Запит або відповідь заблоковано фільтрами безпеки. Спробуйте переформулювати питання."
)
MODEL_OVERLOADED_MESSAGE = "Сервіс AI тимчасово перевантажений. Будь ласка, спробуйте ще раз."
NETWORK_ERROR_MESSAGE = "Не вдалося з'єднатися із сервером. Перевірте підключення до інтернету."
TIMEOUT_MESSAGE = "Час очікування відповіді вичерпано. Будь ласка, спробуйте ще раз."
EMPTY_MESSAGE_ERROR = "Повідомлення не може бути порожнім."

ERROR_NARRATION_PREFIX = "Вибачте, сталася помилка: "

"""
Localized user-facing strings.

One table keyed by (MessageId, language). Every canned reply the service
produces (refusals, soft failures, adapter hints, error messages) is looked
up here so adapters and handlers never carry their own literal strings.
"""
from enum import Enum
from typing import Dict

SUPPORTED_LANGUAGES = ("en", "fr", "ar")
DEFAULT_LANGUAGE = "en"


class MessageId(str, Enum):
    LANGUAGE_NAME = "language_name"
    DOMAIN_REFUSAL = "domain_refusal"
    QUOTA_EXHAUSTED = "quota_exhausted"
    NO_ANSWER = "no_answer"

    # Errors surfaced in the {"error", "message"} body
    MISSING_USER_MESSAGE = "missing_user_message"
    MESSAGE_TOO_LONG = "message_too_long"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    CHAT_FAILED = "chat_failed"
    EMBEDDING_FAILED = "embedding_failed"

    # Weather
    WEATHER_CURRENT = "weather_current"
    WEATHER_TODAY = "weather_today"

    # Directions
    DIRECTIONS_NOT_CONFIGURED = "directions_not_configured"
    DIRECTIONS_USAGE = "directions_usage"
    DIRECTIONS_GEOCODE_FAILED = "directions_geocode_failed"
    DIRECTIONS_NO_ROUTE = "directions_no_route"
    DIRECTIONS_ROUTE = "directions_route"
    DIRECTIONS_UNAVAILABLE = "directions_unavailable"

    # Web search
    WEB_NOT_CONFIGURED = "web_not_configured"
    WEB_NO_RESULTS = "web_no_results"
    WEB_TOP_RESULTS = "web_top_results"
    WEB_UNAVAILABLE = "web_unavailable"


MESSAGES: Dict[MessageId, Dict[str, str]] = {
    MessageId.LANGUAGE_NAME: {
        "en": "English",
        "fr": "French",
        "ar": "Arabic",
    },
    MessageId.DOMAIN_REFUSAL: {
        "en": (
            "I answer from the app's data (services, news, CAN 2025 stadiums and places). "
            "Try for example: \"health services in Rabat\", \"legal aid in Casablanca\" "
            "or \"stadiums in Tangier\". Enable external info for weather, directions or web search."
        ),
        "fr": (
            "Je réponds avec les données de l'app (services, actualités, stades et lieux de la CAN 2025). "
            "Essayez par exemple : « services de santé à Rabat », « aide juridique à Casablanca » "
            "ou « stades à Tanger ». Activez les infos externes pour la météo, les itinéraires ou la recherche web."
        ),
        "ar": (
            "أجيب من بيانات التطبيق (الخدمات، الأخبار، ملاعب وأماكن كأس إفريقيا 2025). "
            "جرّب مثلًا: «الخدمات الصحية في الرباط»، «المساعدة القانونية في الدار البيضاء» "
            "أو «الملاعب في طنجة». فعّل المصادر الخارجية للطقس أو الاتجاهات أو البحث على الويب."
        ),
    },
    MessageId.QUOTA_EXHAUSTED: {
        "en": "The assistant is busy right now. Please wait a few seconds and try again.",
        "fr": "L'assistant est très sollicité. Patientez quelques secondes puis réessayez.",
        "ar": "المساعد مشغول حاليًا. يرجى الانتظار بضع ثوانٍ ثم المحاولة مرة أخرى.",
    },
    MessageId.NO_ANSWER: {
        "en": "...",
        "fr": "...",
        "ar": "...",
    },
    MessageId.MISSING_USER_MESSAGE: {
        "en": "Please type a message.",
        "fr": "Veuillez saisir un message.",
        "ar": "يرجى كتابة رسالة.",
    },
    MessageId.MESSAGE_TOO_LONG: {
        "en": "Your message is too long (maximum {limit} characters).",
        "fr": "Votre message est trop long (maximum {limit} caractères).",
        "ar": "رسالتك طويلة جدًا (الحد الأقصى {limit} حرفًا).",
    },
    MessageId.UNAUTHORIZED: {
        "en": "Unauthorized.",
        "fr": "Non autorisé.",
        "ar": "غير مصرح.",
    },
    MessageId.RATE_LIMITED: {
        "en": "Daily request limit reached. Please try again tomorrow.",
        "fr": "Limite quotidienne atteinte. Réessayez demain.",
        "ar": "تم بلوغ الحد اليومي للطلبات. حاول مرة أخرى غدًا.",
    },
    MessageId.CHAT_FAILED: {
        "en": "Something went wrong. Please try again.",
        "fr": "Une erreur est survenue. Veuillez réessayer.",
        "ar": "حدث خطأ ما. يرجى المحاولة مرة أخرى.",
    },
    MessageId.EMBEDDING_FAILED: {
        "en": "Your question could not be processed right now. Please try again.",
        "fr": "Votre question n'a pas pu être traitée pour le moment. Veuillez réessayer.",
        "ar": "تعذّرت معالجة سؤالك حاليًا. يرجى المحاولة مرة أخرى.",
    },
    MessageId.WEATHER_CURRENT: {
        "en": "Weather for {place}, {country}: {temperature}°C, wind {wind} km/h.",
        "fr": "Météo pour {place}, {country} : {temperature}°C, vent {wind} km/h.",
        "ar": "الطقس في {place}، {country}: {temperature}°م، الرياح {wind} كم/س.",
    },
    MessageId.WEATHER_TODAY: {
        "en": "Today: min {min}°C / max {max}°C, precipitation {precipitation} mm.",
        "fr": "Aujourd'hui : min {min}°C / max {max}°C, précipitations {precipitation} mm.",
        "ar": "اليوم: الدنيا {min}°م / العليا {max}°م، التساقطات {precipitation} مم.",
    },
    MessageId.DIRECTIONS_NOT_CONFIGURED: {
        "en": "Add OPENROUTESERVICE_API_KEY on the server to get real routes (car/walking).",
        "fr": "Ajoutez OPENROUTESERVICE_API_KEY côté serveur pour obtenir des itinéraires réels (voiture/marche).",
        "ar": "أضِف OPENROUTESERVICE_API_KEY على الخادم للحصول على مسارات فعلية (سيارة/سير).",
    },
    MessageId.DIRECTIONS_USAGE: {
        "en": "Use: \"from [origin] to [destination]\" (e.g., from Rabat to Casablanca).",
        "fr": "Indiquez : « de [origine] à [destination] » (ex : de Rabat à Casablanca).",
        "ar": "اكتب: « من [المكان] إلى [الوجهة] » (مثال: من الرباط إلى الدار البيضاء).",
    },
    MessageId.DIRECTIONS_GEOCODE_FAILED: {
        "en": "Couldn't locate the origin or destination. Try clearer place names.",
        "fr": "Impossible de localiser l'origine ou la destination. Essayez des noms de lieux plus précis.",
        "ar": "تعذّر تحديد نقطة الانطلاق أو الوجهة. جرّب أسماء أماكن أوضح.",
    },
    MessageId.DIRECTIONS_NO_ROUTE: {
        "en": "No route found.",
        "fr": "Aucun itinéraire trouvé.",
        "ar": "لم يتم العثور على مسار.",
    },
    MessageId.DIRECTIONS_ROUTE: {
        "en": "Route: {origin} → {destination}\nDistance: {distance} km, Duration: ~{minutes} min\n\nSteps:\n{steps}",
        "fr": "Itinéraire : {origin} → {destination}\nDistance : {distance} km, Durée : ~{minutes} min\n\nÉtapes :\n{steps}",
        "ar": "المسار: {origin} ← {destination}\nالمسافة: {distance} كم، المدة: ~{minutes} دقيقة\n\nالخطوات:\n{steps}",
    },
    MessageId.DIRECTIONS_UNAVAILABLE: {
        "en": "The route service is unavailable right now. Please try again later.",
        "fr": "Le service d'itinéraires est indisponible pour le moment. Réessayez plus tard.",
        "ar": "خدمة المسارات غير متاحة حاليًا. حاول لاحقًا.",
    },
    MessageId.WEB_NOT_CONFIGURED: {
        "en": "Web search not configured. Add SERPAPI_API_KEY.",
        "fr": "Recherche web non configurée. Ajoutez SERPAPI_API_KEY.",
        "ar": "البحث على الويب غير مُفعّل. أضِف SERPAPI_API_KEY.",
    },
    MessageId.WEB_NO_RESULTS: {
        "en": "No relevant results.",
        "fr": "Aucun résultat pertinent.",
        "ar": "لا توجد نتائج ذات صلة.",
    },
    MessageId.WEB_TOP_RESULTS: {
        "en": "Top results:\n\n{results}",
        "fr": "Meilleurs résultats :\n\n{results}",
        "ar": "أهم النتائج:\n\n{results}",
    },
    MessageId.WEB_UNAVAILABLE: {
        "en": "Web search is unavailable right now. Please try again later.",
        "fr": "La recherche web est indisponible pour le moment. Réessayez plus tard.",
        "ar": "البحث على الويب غير متاح حاليًا. حاول لاحقًا.",
    },
}


def normalize_language(language) -> str:
    """Map any requested language onto a supported one (default English)."""
    if isinstance(language, str):
        code = language.strip().lower()[:2]
        if code in SUPPORTED_LANGUAGES:
            return code
    return DEFAULT_LANGUAGE


def localize(message_id: MessageId, language: str, **params) -> str:
    """
    Look up a message in the caller's language, falling back to English.

    Args:
        message_id: Which message
        language: Language code (en, fr, ar)
        **params: Values for the message's {placeholders}

    Returns:
        The formatted message
    """
    table = MESSAGES[message_id]
    template = table.get(normalize_language(language), table[DEFAULT_LANGUAGE])
    return template.format(**params) if params else template

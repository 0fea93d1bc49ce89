SUPPORTED_LANGUAGES = ("en", "fr", "ar")

LANGUAGE_NAMES = {
    "en": "English",
    "fr": "French",
    "ar": "Arabic",
}

AI_FALLBACK_MESSAGES = {
    "fr": (
        "Notre assistant IA a rencontré un problème inattendu.\n"
        "Vous pouvez réessayer dans quelques instants ou laisser plus de détails : "
        "un agent humain prendra le relais si besoin."
    ),
    "en": (
        "Our AI assistant encountered an unexpected issue.\n"
        "You can try again shortly or provide more details, and a human agent will follow up if needed."
    ),
    "ar": (
        "واجه مساعد الذكاء الاصطناعي مشكلة غير متوقعة.\n"
        "يمكنك المحاولة لاحقًا أو تقديم مزيد من التفاصيل، وسيقوم عميل بشري بمتابعة طلبك عند الحاجة."
    ),
}

SUMMARY_FALLBACK_MESSAGES = {
    "fr": "Impossible de générer le résumé du ticket pour le moment.",
    "en": "The ticket summary could not be generated at the moment.",
    "ar": "تعذر إنشاء ملخص التذكرة في الوقت الحالي.",
}

DRAFT_FALLBACK_TITLES = {
    "fr": "Demande d'assistance",
    "en": "Help request",
    "ar": "طلب مساعدة",
}

APPOINTMENT_MESSAGES = {
    "fr": {
        "pending_user_approval": "Rendez-vous proposé le {date} à {time} ({location})",
        "pending_agent_approval": "Demande de rendez-vous pour le {date} à {time} ({location})",
        "confirmed": "Rendez-vous confirmé le {date} à {time} ({location})",
        "rescheduled_by_user": "Demande de replanification pour le {date} à {time} ({location})",
        "rescheduled_by_agent": "Nouvelle proposition de rendez-vous le {date} à {time} ({location})",
        "cancelled_by_user": "Rendez-vous du {date} à {time} annulé par l'utilisateur",
        "cancelled_by_agent": "Rendez-vous du {date} à {time} annulé par l'agent",
        "deleted": "Rendez-vous du {date} à {time} supprimé",
        "restored": "Rendez-vous du {date} à {time} rétabli",
    },
    "en": {
        "pending_user_approval": "Appointment proposed for {date} at {time} ({location})",
        "pending_agent_approval": "Appointment requested for {date} at {time} ({location})",
        "confirmed": "Appointment confirmed for {date} at {time} ({location})",
        "rescheduled_by_user": "Reschedule requested for {date} at {time} ({location})",
        "rescheduled_by_agent": "New appointment time proposed: {date} at {time} ({location})",
        "cancelled_by_user": "Appointment on {date} at {time} cancelled by the user",
        "cancelled_by_agent": "Appointment on {date} at {time} cancelled by the agent",
        "deleted": "Appointment on {date} at {time} deleted",
        "restored": "Appointment on {date} at {time} restored",
    },
    "ar": {
        "pending_user_approval": "تم اقتراح موعد في {date} الساعة {time} ({location})",
        "pending_agent_approval": "تم طلب موعد في {date} الساعة {time} ({location})",
        "confirmed": "تم تأكيد الموعد في {date} الساعة {time} ({location})",
        "rescheduled_by_user": "طلب إعادة جدولة إلى {date} الساعة {time} ({location})",
        "rescheduled_by_agent": "اقتراح موعد جديد في {date} الساعة {time} ({location})",
        "cancelled_by_user": "ألغى المستخدم موعد {date} الساعة {time}",
        "cancelled_by_agent": "ألغى الوكيل موعد {date} الساعة {time}",
        "deleted": "تم حذف موعد {date} الساعة {time}",
        "restored": "تمت استعادة موعد {date} الساعة {time}",
    },
}


def normalize_language(language: str | None, default: str = "en") -> str:
    if language and language.lower()[:2] in SUPPORTED_LANGUAGES:
        return language.lower()[:2]
    return default


def language_name(language: str | None) -> str:
    return LANGUAGE_NAMES[normalize_language(language)]


def ai_fallback_message(language: str | None) -> str:
    return AI_FALLBACK_MESSAGES[normalize_language(language)]


def summary_fallback_message(language: str | None) -> str:
    return SUMMARY_FALLBACK_MESSAGES[normalize_language(language)]


def draft_fallback_title(language: str | None) -> str:
    return DRAFT_FALLBACK_TITLES[normalize_language(language)]


def appointment_message(event: str, language: str | None, **values: str) -> str:
    return APPOINTMENT_MESSAGES[normalize_language(language)][event].format(**values)

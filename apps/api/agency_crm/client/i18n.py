from __future__ import annotations

from typing import Mapping

MESSAGES: dict[str, dict[str, str]] = {
    "ar": {
        "no_data": "لا توجد بيانات لعرضها",
        "load_error": "خطأ في تحميل البيانات: {error}",
        "showing": "عرض {start} إلى {end} من {total} نتيجة",
        "page_of": "{page} / {total_pages}",
        "selected": "تم تحديد {count} عنصر",
        "search_placeholder": "البحث...",
        "active": "نشط",
        "inactive": "غير نشط",
        "yes": "نعم",
        "no": "لا",
    },
    "en": {
        "no_data": "No data to display",
        "load_error": "Failed to load data: {error}",
        "showing": "Showing {start} to {end} of {total} results",
        "page_of": "{page} / {total_pages}",
        "selected": "{count} selected",
        "search_placeholder": "Search...",
        "active": "Active",
        "inactive": "Inactive",
        "yes": "Yes",
        "no": "No",
    },
}

DEFAULT_LOCALE = "ar"


def language(locale: str) -> str:
    return locale.replace("-", "_").split("_")[0].lower()


def message(key: str, locale: str = DEFAULT_LOCALE, **values: object) -> str:
    catalog = MESSAGES.get(language(locale), MESSAGES[DEFAULT_LOCALE])
    template = catalog.get(key, MESSAGES["en"].get(key, key))
    return template.format(**values)


def pick(labels: Mapping[str, str], locale: str) -> str:
    """Choose a label from a ``{locale: text}`` mapping, falling back to Arabic then English."""
    for candidate in (locale, language(locale), DEFAULT_LOCALE, "en"):
        if candidate in labels:
            return labels[candidate]
    return next(iter(labels.values()), "")

"""
Template identity — короткая и полностью квалифицированная форма record type.

Короткая форма: `Module:Type`.
Полная форма: `<packageId>:Module:Type`.

Квалификация — чистая функция короткой формы и текущего package id.
"""

TEMPLATE_SEPARATOR = ":"


def is_qualified(template_id: str) -> bool:
    """True если template id содержит package id (три сегмента и более)."""
    parts = template_id.split(TEMPLATE_SEPARATOR)
    return len(parts) >= 3 and all(parts)


def package_id_of(template_id: str) -> str | None:
    """Package id из полной формы, None для короткой."""
    if not is_qualified(template_id):
        return None
    return template_id.split(TEMPLATE_SEPARATOR, 1)[0]


def short_form(template_id: str) -> str:
    """`Module:Type` из любой формы."""
    if is_qualified(template_id):
        return template_id.split(TEMPLATE_SEPARATOR, 1)[1]
    return template_id


def qualify(template_id: str, package_id: str) -> str:
    """
    Квалификация короткой формы.

    Уже квалифицированный id возвращается без изменений.
    """
    if is_qualified(template_id):
        return template_id
    parts = template_id.split(TEMPLATE_SEPARATOR)
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"template id {template_id!r} is not of the form Module:Type")
    if not package_id:
        raise ValueError("package_id is required for qualification")
    return f"{package_id}{TEMPLATE_SEPARATOR}{template_id}"


def same_template(left: str, right: str) -> bool:
    """Сравнение по короткой форме (package id игнорируется)."""
    return short_form(left) == short_form(right)

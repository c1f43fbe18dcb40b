"""Field rules for the lead-capture survey form."""
from __future__ import annotations

import re
from typing import Any, Callable, Mapping, Optional

_NOMBRE_RE = re.compile(r"^[a-zA-ZáéíóúÁÉÍÓÚñÑ\s]+$")
_TELEFONO_STRIP_RE = re.compile(r"[\s\-()]")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_EMAIL_TLD_RE = re.compile(r"\.(com|co|net|org)$", re.IGNORECASE)


def validate_nombre(nombre: str) -> Optional[str]:
    if not nombre.strip():
        return "El nombre es obligatorio"
    if len(nombre.strip()) < 2:
        return "El nombre debe tener al menos 2 caracteres"
    if not _NOMBRE_RE.match(nombre):
        return "El nombre solo puede contener letras y espacios"
    return None


def validate_telefono(telefono: str) -> Optional[str]:
    if not telefono.strip():
        return "El teléfono es obligatorio"
    digits = _TELEFONO_STRIP_RE.sub("", telefono)
    if not digits.isascii() or not digits.isdigit():
        return "El teléfono solo puede contener números"
    if len(digits) < 7 or len(digits) > 10:
        return "El teléfono debe tener entre 7 y 10 dígitos"
    return None


def validate_correo(correo: str) -> Optional[str]:
    if not correo.strip():
        return "El correo es obligatorio"
    if not _EMAIL_RE.match(correo):
        return "Ingresa un correo válido (ejemplo@dominio.com)"
    if not _EMAIL_TLD_RE.search(correo):
        return "El correo debe tener una extensión válida (.com, .co, .net, .org)"
    return None


def validate_empresa(empresa: str) -> Optional[str]:
    if empresa.strip() and len(empresa.strip()) < 2:
        return "Si ingresas empresa, debe tener al menos 2 caracteres"
    return None


def validate_cargo(cargo: str) -> Optional[str]:
    if cargo.strip() and len(cargo.strip()) < 2:
        return "Si ingresas cargo, debe tener al menos 2 caracteres"
    return None


FIELD_VALIDATORS: dict[str, Callable[[str], Optional[str]]] = {
    "nombre": validate_nombre,
    "telefono": validate_telefono,
    "correo": validate_correo,
    "empresa": validate_empresa,
    "cargo": validate_cargo,
}


def validate_form(data: Mapping[str, Any]) -> dict[str, str]:
    """Return a field -> message mapping; empty when the form is valid."""

    errors: dict[str, str] = {}
    for field, validator in FIELD_VALIDATORS.items():
        value = data.get(field)
        message = validator(value if isinstance(value, str) else "")
        if message:
            errors[field] = message
    return errors


__all__ = [
    "FIELD_VALIDATORS",
    "validate_cargo",
    "validate_correo",
    "validate_empresa",
    "validate_form",
    "validate_nombre",
    "validate_telefono",
]

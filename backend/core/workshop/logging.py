"""CPF/CNPJ masking for what the workshop writes to its logs.

Customer documents travel in service orders, Focus NFe payloads and the
gateway's error texts. `MaskCPFCNPJFilter` is attached to the console handler
in `settings.LOGGING`; the fiscal code also calls `mask_cpf_cnpj` on gateway
error texts it interpolates into log arguments.
"""

from __future__ import annotations

import logging
import re
from typing import Any


_CNPJ_RE = re.compile(
    r"(?<!\d)(?:\d{14}|\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2})(?!\d)"
)
_CPF_RE = re.compile(r"(?<!\d)(?:\d{11}|\d{3}\.\d{3}\.\d{3}-\d{2})(?!\d)")

_MASKED_EXTRA_FIELDS = ("cpf", "cnpj", "cpf_cnpj", "tomador", "prestador")


def mask_cpf_cnpj(text: str) -> str:
    """Replace CPF/CNPJ numbers (raw digits or formatted) with placeholders.

    Gateway error texts frequently echo the recipient document back
    (e.g. "CPF 12345678909 invalido"), so everything persisted or logged from
    the fiscal flow goes through here first.
    """

    if not text:
        return text

    text = _CNPJ_RE.sub("***CNPJ***", text)
    text = _CPF_RE.sub("***CPF***", text)
    return text


class MaskCPFCNPJFilter(logging.Filter):
    """Logging filter wired in settings.LOGGING for every console handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):  # pragma: no cover
            message = str(getattr(record, "msg", ""))

        record.msg = mask_cpf_cnpj(str(message))
        record.args = ()

        for key in _MASKED_EXTRA_FIELDS:
            if hasattr(record, key):
                value: Any = getattr(record, key)
                if isinstance(value, str):
                    setattr(record, key, mask_cpf_cnpj(value))

        return True

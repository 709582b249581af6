# binalloc/schemas/_base.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class _Base(BaseModel):
    """
    通用基类：
    - extra = ignore: 忽略多余字段；
    - str_strip_whitespace: sku / code / lot 去首尾空白。
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

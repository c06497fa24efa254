from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from iso_assembler.framework.config import BuildConfig
from iso_assembler.framework.errors import AssemblyError
from iso_assembler.framework.layout import BootMediaLayout
from iso_assembler.framework.request import BuildRequest


@dataclass
class BuildContext:
    build_id: str
    cfg: BuildConfig
    logger: logging.Logger
    request: BuildRequest
    layout: BootMediaLayout
    created_at: str

    staging_root: Path | None = None
    staging_owned: bool = False

    outputs: dict[str, Any] = field(default_factory=dict)
    steps: list[dict[str, Any]] = field(default_factory=list)

    error: dict[str, Any] | None = None


@dataclass(frozen=True)
class BuildOutcome:
    build_id: str
    output_path: Path | None
    error: AssemblyError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

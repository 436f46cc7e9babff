"""
Configuration for the IR Lab engine.

Values come from environment variables (optionally loaded from `.env.local`
or `.env` via python-dotenv) and are materialised into pydantic models:

    IR_STORE_TYPE            Index store backend (only "memory" is implemented)
    IR_BM25_K1               BM25 term frequency saturation (default: 1.2)
    IR_BM25_B                BM25 length normalization (default: 0.75)
    IR_TITLE_WEIGHT          Field weight for title chunks (default: 2.0)
    IR_CONTENT_WEIGHT        Field weight for body content (default: 1.0)
    IR_TABLE_HEADER_WEIGHT   Field weight for table header chunks (default: 1.5)
    IR_CHUNK_MIN_TOKENS      Lower chunk size target (default: 400)
    IR_CHUNK_MAX_TOKENS      Upper chunk size bound (default: 800)
    IR_CHUNK_OVERLAP_RATIO   Share of a chunk carried into the next (default: 0.15)
    IR_EXPAND_SYNONYMS       Score synonym expansions too (default: true)
    IR_DEDUPLICATE_UPLOADS   Skip re-indexing identical bytes (default: true)

Engine parameters that are out of range raise InvalidConfigurationError.
Per-query SearchOptions are validated by pydantic and raise ValidationError,
since a malformed option is a programmer error at the call site.
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .exceptions import InvalidConfigurationError

logger = logging.getLogger(__name__)


class FieldWeights(BaseModel):
    """Score multipliers for structurally important chunk regions"""
    model_config = ConfigDict(frozen=True)

    title: float = 2.0
    content: float = 1.0
    table_header: float = 1.5

    @model_validator(mode="after")
    def _check_positive(self):
        for name in ("title", "content", "table_header"):
            value = getattr(self, name)
            if value <= 0:
                raise InvalidConfigurationError(
                    f"Field weight '{name}' must be positive, got {value}",
                    details={"field": name, "value": value},
                )
        return self


class BM25Parameters(BaseModel):
    """
    BM25 ranking parameters.

    k1: Term frequency saturation. Range 0.0 - 3.0, standard 1.2
    b: Length normalization. Range 0.0 - 1.0, standard 0.75
    field_weights: Multipliers applied at the chunk level
    """
    model_config = ConfigDict(frozen=True)

    k1: float = 1.2
    b: float = 0.75
    field_weights: FieldWeights = Field(default_factory=FieldWeights)

    @model_validator(mode="after")
    def _check_ranges(self):
        if not 0.0 <= self.k1 <= 3.0:
            raise InvalidConfigurationError(
                f"BM25 k1 must be within [0, 3], got {self.k1}",
                details={"k1": self.k1},
            )
        if not 0.0 <= self.b <= 1.0:
            raise InvalidConfigurationError(
                f"BM25 b must be within [0, 1], got {self.b}",
                details={"b": self.b},
            )
        return self


class ChunkingConfig(BaseModel):
    """Token budget for the segmenter"""
    model_config = ConfigDict(frozen=True)

    min_tokens: int = 400
    max_tokens: int = 800
    overlap_ratio: float = 0.15

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_tokens < 1:
            raise InvalidConfigurationError(
                f"min_tokens must be at least 1, got {self.min_tokens}",
                details={"min_tokens": self.min_tokens},
            )
        if self.min_tokens > self.max_tokens:
            raise InvalidConfigurationError(
                f"min_tokens ({self.min_tokens}) must not exceed max_tokens ({self.max_tokens})",
                details={"min_tokens": self.min_tokens, "max_tokens": self.max_tokens},
            )
        if not 0.0 <= self.overlap_ratio < 1.0:
            raise InvalidConfigurationError(
                f"overlap_ratio must be within [0, 1), got {self.overlap_ratio}",
                details={"overlap_ratio": self.overlap_ratio},
            )
        return self


class EngineConfig(BaseModel):
    """Engine-wide settings, fixed for the lifetime of an IREngine"""
    model_config = ConfigDict(frozen=True)

    store_type: str = "memory"
    bm25: BM25Parameters = Field(default_factory=BM25Parameters)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    expand_synonyms: bool = True
    deduplicate_uploads: bool = True
    prf_feedback_docs: int = 3
    prf_expansion_terms: int = 5

    @model_validator(mode="after")
    def _check_prf(self):
        if self.prf_feedback_docs < 1 or self.prf_expansion_terms < 0:
            raise InvalidConfigurationError(
                "PRF needs at least one feedback result and a non-negative expansion size",
                details={
                    "prf_feedback_docs": self.prf_feedback_docs,
                    "prf_expansion_terms": self.prf_expansion_terms,
                },
            )
        return self


class SearchOptions(BaseModel):
    """Per-query options"""
    model_config = ConfigDict(extra="forbid")

    top_k: int = Field(default=10, ge=1, description="Documents kept by the coarse stage")
    top_n: int = Field(default=5, ge=1, description="Chunks returned by the fine stage")
    use_hierarchical_search: bool = Field(default=True, description="Narrow to documents before ranking chunks")
    use_prf: bool = Field(default=False, description="Re-run the fine stage with pseudo-relevance feedback terms")
    explain: bool = Field(default=False, description="Attach per-term score breakdowns")
    min_score: float = Field(default=0.01, ge=0.0, description="Results below this score are dropped")


def load_environment(project_root: Optional[Path] = None) -> Optional[Path]:
    """
    Load `.env.local` (highest priority) or `.env` into os.environ.

    Returns:
        Path of the loaded file, or None when only the process environment is used
    """
    root = project_root or Path.cwd()
    env_local = root / ".env.local"
    env_file = root / ".env"

    if env_local.exists():
        load_dotenv(env_local, override=True)
        logger.info(f"Loaded environment from: {env_local}")
        return env_local
    if env_file.exists():
        load_dotenv(env_file, override=True)
        logger.info(f"Loaded environment from: {env_file}")
        return env_file

    logger.debug("No .env.local or .env file found - using process environment only")
    return None


def _read(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise InvalidConfigurationError(
            f"{name} has an invalid value: {raw!r}",
            details={"variable": name, "value": raw},
        )


def _as_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(raw)


def load_config(env: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """
    Build EngineConfig from environment variables.

    Args:
        env: Mapping to read from (default: os.environ)

    Raises:
        InvalidConfigurationError: unparseable or out-of-range values
    """
    env = os.environ if env is None else env

    config = EngineConfig(
        store_type=_read(env, "IR_STORE_TYPE", "memory", str).lower(),
        bm25=BM25Parameters(
            k1=_read(env, "IR_BM25_K1", 1.2, float),
            b=_read(env, "IR_BM25_B", 0.75, float),
            field_weights=FieldWeights(
                title=_read(env, "IR_TITLE_WEIGHT", 2.0, float),
                content=_read(env, "IR_CONTENT_WEIGHT", 1.0, float),
                table_header=_read(env, "IR_TABLE_HEADER_WEIGHT", 1.5, float),
            ),
        ),
        chunking=ChunkingConfig(
            min_tokens=_read(env, "IR_CHUNK_MIN_TOKENS", 400, int),
            max_tokens=_read(env, "IR_CHUNK_MAX_TOKENS", 800, int),
            overlap_ratio=_read(env, "IR_CHUNK_OVERLAP_RATIO", 0.15, float),
        ),
        expand_synonyms=_read(env, "IR_EXPAND_SYNONYMS", True, _as_bool),
        deduplicate_uploads=_read(env, "IR_DEDUPLICATE_UPLOADS", True, _as_bool),
    )

    logger.debug(f"Engine config: {config.model_dump()}")
    return config

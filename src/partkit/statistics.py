"""
Statistics strategy for partkit.

Derives optimizer statistics collection parameters from table size and the
scope of a change, and renders the DBMS_STATS calls that apply them.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .config import StatisticsConfig
from .exceptions import ValidationError


logger = logging.getLogger(__name__)


class Granularity(str, Enum):
    """DBMS_STATS granularity values."""

    ALL = "ALL"
    AUTO = "AUTO"
    GLOBAL = "GLOBAL"
    PARTITION = "PARTITION"
    SUBPARTITION = "SUBPARTITION"


class ScopeLevel(str, Enum):
    """How much of a table a change touched."""

    TABLE = "table"
    PARTITION = "partition"
    SUBPARTITION = "subpartition"


class StatsStrategy(str, Enum):
    """Named collection strategies."""

    STANDARD = "STANDARD"
    INCREMENTAL_STANDARD = "INCREMENTAL_STANDARD"
    INCREMENTAL_CONCURRENT = "INCREMENTAL_CONCURRENT"


@dataclass(frozen=True)
class StatsScope:
    """The object whose statistics need refreshing."""

    level: ScopeLevel = ScopeLevel.TABLE
    partition_name: Optional[str] = None
    subpartition_name: Optional[str] = None

    @classmethod
    def whole_table(cls) -> "StatsScope":
        return cls()

    @classmethod
    def partition(cls, partition_name: str) -> "StatsScope":
        return cls(ScopeLevel.PARTITION, partition_name=partition_name)

    @classmethod
    def subpartition(cls, subpartition_name: str) -> "StatsScope":
        return cls(ScopeLevel.SUBPARTITION, subpartition_name=subpartition_name)

    @property
    def object_name(self) -> Optional[str]:
        """Name passed as ``partname`` to DBMS_STATS."""
        if self.level is ScopeLevel.SUBPARTITION:
            return self.subpartition_name
        if self.level is ScopeLevel.PARTITION:
            return self.partition_name
        return None


@dataclass(frozen=True)
class StatsPlan:
    """Parameters for one statistics collection."""

    degree: int
    granularity: Granularity
    incremental: bool
    sample_percent: Optional[float] = None  # None means AUTO_SAMPLE_SIZE
    global_refresh: bool = False
    concurrent: bool = False
    cascade: bool = True
    strategy: StatsStrategy = StatsStrategy.STANDARD
    estimated_minutes: Optional[float] = None

    @property
    def estimate_percent_sql(self) -> str:
        if self.sample_percent is None:
            return "DBMS_STATS.AUTO_SAMPLE_SIZE"
        return f"{self.sample_percent:g}"

    def for_global_refresh(self) -> "StatsPlan":
        """The follow-up plan that refreshes table-level statistics."""
        return replace(self, granularity=Granularity.GLOBAL, global_refresh=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "degree": self.degree,
            "granularity": self.granularity.value,
            "incremental": self.incremental,
            "sample_percent": self.sample_percent,
            "global_refresh": self.global_refresh,
            "strategy": self.strategy.value,
            "estimated_minutes": self.estimated_minutes,
        }


class StatisticsStrategyEngine:
    """Pure decision logic for statistics collection."""

    def __init__(self, config: Optional[StatisticsConfig] = None):
        self.config = config or StatisticsConfig()

    def degree_for(self, cardinality: Optional[int]) -> int:
        """Parallel degree by row-count band."""
        cfg = self.config
        if cardinality is None:
            return cfg.default_degree
        if cardinality < cfg.small_table_rows:
            return cfg.small_table_degree
        if cardinality < cfg.medium_table_rows:
            return cfg.medium_table_degree
        if cardinality < cfg.large_table_rows:
            return cfg.large_table_degree
        return cfg.huge_table_degree

    def estimate_minutes(self, cardinality: Optional[int], incremental: bool) -> Optional[float]:
        """Rough wall-clock estimate for a full collection."""
        if cardinality is None:
            return None
        cfg = self.config
        if cardinality < 100_000:
            minutes = 0.5
        elif cardinality < cfg.small_table_rows:
            minutes = 2.0
        elif cardinality < cfg.medium_table_rows:
            minutes = 10.0
        elif cardinality < cfg.large_table_rows:
            minutes = 30.0
        else:
            minutes = 60.0
        if incremental:
            minutes *= 0.3
        return round(minutes, 2)

    def recommend(
        self,
        table_name: str,
        cardinality_hint: Optional[int],
        scope: Optional[StatsScope] = None,
        incremental: Optional[bool] = None,
        sample_percent: Optional[float] = None,
        partitioned: bool = True,
    ) -> StatsPlan:
        """Recommend a collection plan for ``table_name``.

        ``incremental`` and ``sample_percent`` override the configured
        defaults when given.
        """
        scope = scope or StatsScope.whole_table()
        if cardinality_hint is not None and cardinality_hint < 0:
            raise ValidationError(
                f"Cardinality hint must not be negative: {cardinality_hint}",
                {"table": table_name},
            )
        if sample_percent is not None and not 0 < sample_percent <= 100:
            raise ValidationError(
                f"Sample percent must be in (0, 100]: {sample_percent}",
                {"table": table_name},
            )

        if scope.level is ScopeLevel.PARTITION:
            granularity = Granularity.PARTITION
        elif scope.level is ScopeLevel.SUBPARTITION:
            granularity = Granularity.SUBPARTITION
        else:
            granularity = Granularity.ALL

        if incremental is None:
            incremental = self.config.incremental and partitioned
        if sample_percent is None:
            sample_percent = self.config.sample_percent

        degree = self.degree_for(cardinality_hint)
        concurrent = (
            incremental
            and cardinality_hint is not None
            and cardinality_hint >= self.config.small_table_rows
        )
        if not incremental:
            strategy = StatsStrategy.STANDARD
        elif concurrent:
            strategy = StatsStrategy.INCREMENTAL_CONCURRENT
        else:
            strategy = StatsStrategy.INCREMENTAL_STANDARD

        plan = StatsPlan(
            degree=degree,
            granularity=granularity,
            incremental=incremental,
            sample_percent=sample_percent,
            global_refresh=(
                granularity is not Granularity.ALL and self.config.global_refresh
            ),
            concurrent=concurrent,
            cascade=self.config.cascade,
            strategy=strategy,
            estimated_minutes=self.estimate_minutes(cardinality_hint, incremental),
        )
        logger.debug(f"Statistics plan for {table_name} ({scope.level.value}): {plan}")
        return plan


def render_gather_stats(
    table_name: str, plan: StatsPlan, partition_name: Optional[str] = None
) -> Tuple[str, Dict[str, Any]]:
    """PL/SQL block and binds gathering statistics according to ``plan``."""
    owner, _, name = table_name.rpartition(".")
    block = f"""
        BEGIN
            DBMS_STATS.GATHER_TABLE_STATS(
                ownname          => NVL(:owner, USER),
                tabname          => :table_name,
                partname         => :partition_name,
                estimate_percent => {plan.estimate_percent_sql},
                degree           => {plan.degree},
                granularity      => '{plan.granularity.value}',
                cascade          => {'TRUE' if plan.cascade else 'FALSE'},
                no_invalidate    => FALSE
            );
        END;"""
    params = {
        "owner": owner.upper() or None,
        "table_name": name.upper(),
        "partition_name": partition_name.upper() if partition_name else None,
    }
    return block, params


def render_table_prefs(table_name: str, plan: StatsPlan) -> Tuple[str, Dict[str, Any]]:
    """PL/SQL block setting the table preferences ``plan`` relies on."""
    owner, _, name = table_name.rpartition(".")
    prefs = {
        "INCREMENTAL": "TRUE" if plan.incremental else "FALSE",
        "PUBLISH": "TRUE",
        "ESTIMATE_PERCENT": (
            "DBMS_STATS.AUTO_SAMPLE_SIZE"
            if plan.sample_percent is None
            else f"{plan.sample_percent:g}"
        ),
    }
    if plan.incremental:
        prefs["INCREMENTAL_STALENESS"] = "USE_STALE_PERCENT"

    calls = "\n".join(
        f"            DBMS_STATS.SET_TABLE_PREFS(NVL(:owner, USER), :table_name, "
        f"'{pref}', '{value}');"
        for pref, value in prefs.items()
    )
    if plan.concurrent:
        # Not every release accepts CONCURRENT as a table preference
        calls += """
            BEGIN
                DBMS_STATS.SET_TABLE_PREFS(NVL(:owner, USER), :table_name, 'CONCURRENT', 'TRUE');
            EXCEPTION
                WHEN OTHERS THEN NULL;
            END;"""
    block = f"""
        BEGIN
{calls}
        END;"""
    return block, {"owner": owner.upper() or None, "table_name": name.upper()}

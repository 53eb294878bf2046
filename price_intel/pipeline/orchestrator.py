"""
Per-product intelligence pipeline using LangGraph.

Regenerates everything the engine knows about one product from its stored
observation window: alerts, trends, competitive position, insights and a
pricing recommendation. Every run is a pure function of the window, so
running it twice over the same data yields the same report.

Graph structure:
    load_data --(observations)--> detect_changes -> analyze_market -> recommend_price
        |                                                                   |
        +--(none)--> insufficient_data -------------------------------------+--> build_report -> END
"""

import operator
import time
from datetime import datetime, timedelta
from functools import wraps
from typing import Annotated, Any, Callable, Literal, Optional, TypedDict
from uuid import uuid4

from langgraph.graph import END, StateGraph

from price_intel.analyzers.change_detector import ChangeDetector
from price_intel.analyzers.market_intelligence import MarketIntelligenceAnalyzer
from price_intel.config.settings import Settings, get_settings
from price_intel.models.schemas import (
    DataStatus,
    IntelligenceReport,
    MarketAnalysis,
    Observation,
    PriceAlert,
    PricingRecommendation,
    Product,
    TrackingJob,
    ensure_utc,
    utc_now,
)
from price_intel.services.pricing_engine import PricingRecommendationEngine
from price_intel.storage.repository import IntelligenceRepository
from price_intel.utils.logger import get_logger
from price_intel.utils.retry import PipelineError, ProductNotFoundError

logger = get_logger(__name__)


# =============================================================================
# Pipeline State Definition (TypedDict for LangGraph)
# =============================================================================

class IntelligenceStateDict(TypedDict, total=False):
    """
    TypedDict-based pipeline state for LangGraph.

    Records are stored serialized (``model_dump``) and rebuilt in each node.
    """
    # Identifiers
    run_id: str
    product_id: str
    as_of: str

    # Inputs
    product: dict
    job: dict | None
    observations: list[dict]

    # Step outputs
    alerts: list[dict]
    analysis: dict | None
    recommendation: dict | None
    report: dict | None

    # Status tracking
    data_status: str
    route: str

    # Error handling (uses operator.add for accumulation)
    errors: Annotated[list[str], operator.add]

    # Metadata
    step_timings: dict
    started_at: str
    completed_at: str | None


# =============================================================================
# Decorators for Node Execution
# =============================================================================

def track_timing(func: Callable):
    """Decorator to track node execution timing."""
    @wraps(func)
    async def wrapper(self, state: IntelligenceStateDict) -> dict[str, Any]:
        start_time = time.time()
        node_name = func.__name__.strip("_").replace("_node", "")

        logger.debug(f"Starting node: {node_name}", run_id=state.get("run_id"))

        try:
            result = await func(self, state)
            duration_ms = int((time.time() - start_time) * 1000)

            step_timings = state.get("step_timings", {}).copy()
            step_timings[node_name] = duration_ms
            result["step_timings"] = step_timings

            logger.debug(
                f"Completed node: {node_name}",
                run_id=state.get("run_id"),
                duration_ms=duration_ms,
            )
            return result

        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"Node failed: {node_name}",
                run_id=state.get("run_id"),
                duration_ms=duration_ms,
                error=str(e),
            )
            raise

    return wrapper


# =============================================================================
# Main Pipeline Class
# =============================================================================

class IntelligencePipeline:
    """
    LangGraph-based intelligence cycle for a single product.

    Example:
        >>> pipeline = IntelligencePipeline(repository, settings=settings)
        >>> report = await pipeline.run("sku-1")
        >>> report.recommendation.reasoning
        'below-market-headroom'
    """

    def __init__(
        self,
        repository: IntelligenceRepository,
        settings: Optional[Settings] = None,
        detector: Optional[ChangeDetector] = None,
        analyzer: Optional[MarketIntelligenceAnalyzer] = None,
        engine: Optional[PricingRecommendationEngine] = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.detector = detector or ChangeDetector()
        self.analyzer = analyzer or MarketIntelligenceAnalyzer(self.settings)
        self.engine = engine or PricingRecommendationEngine(self.settings)

        self._graph = self._build_graph()

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self.settings.observation_window_hours)

    def _build_graph(self):
        """Build the LangGraph state machine with all nodes and edges."""
        graph = StateGraph(IntelligenceStateDict)

        graph.add_node("load_data", self._load_data_node)
        graph.add_node("detect_changes", self._detect_changes_node)
        graph.add_node("analyze_market", self._analyze_market_node)
        graph.add_node("recommend_price", self._recommend_price_node)
        graph.add_node("insufficient_data", self._insufficient_data_node)
        graph.add_node("build_report", self._build_report_node)

        graph.set_entry_point("load_data")

        graph.add_conditional_edges(
            "load_data",
            self._route_after_load,
            {
                "analyze": "detect_changes",
                "insufficient": "insufficient_data",
            }
        )

        graph.add_edge("detect_changes", "analyze_market")
        graph.add_edge("analyze_market", "recommend_price")
        graph.add_edge("recommend_price", "build_report")
        graph.add_edge("insufficient_data", "build_report")
        graph.add_edge("build_report", END)

        return graph.compile()

    def _route_after_load(self, state: IntelligenceStateDict) -> Literal["analyze", "insufficient"]:
        """Products without observations skip detection and analysis."""
        if state.get("observations"):
            return "analyze"
        return "insufficient"

    # =========================================================================
    # State helpers
    # =========================================================================

    @staticmethod
    def _observations(state: IntelligenceStateDict) -> list[Observation]:
        return [Observation.model_validate(o) for o in state.get("observations", [])]

    @staticmethod
    def _as_of(state: IntelligenceStateDict) -> datetime:
        return datetime.fromisoformat(state["as_of"])

    # =========================================================================
    # Node Implementations
    # =========================================================================

    @track_timing
    async def _load_data_node(self, state: IntelligenceStateDict) -> dict[str, Any]:
        """Load the product and its observation window from the repository."""
        product_id = state["product_id"]
        product = await self.repository.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        as_of = self._as_of(state)
        observations = [
            o for o in await self.repository.list_observations(
                product_id, since=as_of - self.window
            )
            if o.timestamp <= as_of
        ]

        if observations:
            data_status = DataStatus.OK
        else:
            job = TrackingJob.model_validate(state["job"]) if state.get("job") else None
            failed = job is not None and job.error_count > 0 and job.consecutive_failures > 0
            data_status = DataStatus.TRACKING_FAILED if failed else DataStatus.NO_DATA

        return {
            "product": product.model_dump(),
            "observations": [o.model_dump() for o in observations],
            "data_status": data_status.value,
            "route": "analyze" if observations else "insufficient",
        }

    @track_timing
    async def _detect_changes_node(self, state: IntelligenceStateDict) -> dict[str, Any]:
        """Replay the window to regenerate alerts."""
        alerts = self.detector.detect_series(self._observations(state))
        return {"alerts": [a.model_dump() for a in alerts]}

    @track_timing
    async def _analyze_market_node(self, state: IntelligenceStateDict) -> dict[str, Any]:
        product = Product.model_validate(state["product"])
        analysis = self.analyzer.analyze(
            self._observations(state),
            window=self.window,
            current_price=product.current_price,
            as_of=self._as_of(state),
            product_id=product.id,
        )
        return {"analysis": analysis.model_dump()}

    @track_timing
    async def _recommend_price_node(self, state: IntelligenceStateDict) -> dict[str, Any]:
        product = Product.model_validate(state["product"])
        analysis = MarketAnalysis.model_validate(state["analysis"])
        recommendation = self.engine.recommend(
            product,
            self._observations(state),
            analysis.price_trend,
            as_of=self._as_of(state),
        )
        return {"recommendation": recommendation.model_dump()}

    @track_timing
    async def _insufficient_data_node(self, state: IntelligenceStateDict) -> dict[str, Any]:
        """Low-confidence result with null numeric fields; never an error."""
        product = Product.model_validate(state["product"])
        analysis = self.analyzer.analyze(
            [],
            window=self.window,
            as_of=self._as_of(state),
            product_id=product.id,
        )
        recommendation = self.engine.recommend(product, [], analysis.price_trend)

        logger.info(
            "No observations in window",
            product_id=product.id,
            data_status=state.get("data_status"),
        )
        return {
            "alerts": [],
            "analysis": analysis.model_dump(),
            "recommendation": recommendation.model_dump(),
        }

    @track_timing
    async def _build_report_node(self, state: IntelligenceStateDict) -> dict[str, Any]:
        analysis = MarketAnalysis.model_validate(state["analysis"])
        report = IntelligenceReport(
            product_id=state["product_id"],
            data_status=state["data_status"],
            observations=self._observations(state),
            alerts=[PriceAlert.model_validate(a) for a in state.get("alerts", [])],
            trends=analysis.trends,
            position=analysis.position,
            insights=analysis.insights,
            recommendation=PricingRecommendation.model_validate(state["recommendation"]),
        )
        return {
            "report": report.model_dump(),
            "completed_at": utc_now().isoformat(),
        }

    # =========================================================================
    # Execution
    # =========================================================================

    async def run(
        self,
        product_id: str,
        as_of: Optional[datetime] = None,
        job: Optional[TrackingJob] = None,
        run_id: Optional[str] = None,
    ) -> IntelligenceReport:
        """
        Execute the intelligence cycle for one product.

        Args:
            product_id: Catalog product id.
            as_of: End of the observation window; defaults to now.
            job: Latest tracking job for the product, used for data status.
            run_id: Optional run id for log correlation.

        Raises:
            ProductNotFoundError: The product is not in the repository.
            PipelineError: Any other failure while building the report.
        """
        run_id = run_id or str(uuid4())
        as_of = ensure_utc(as_of) if as_of else utc_now()

        initial_state: IntelligenceStateDict = {
            "run_id": run_id,
            "product_id": product_id,
            "as_of": as_of.isoformat(),
            "job": job.model_dump() if job else None,
            "observations": [],
            "alerts": [],
            "analysis": None,
            "recommendation": None,
            "report": None,
            "errors": [],
            "step_timings": {},
            "started_at": utc_now().isoformat(),
            "completed_at": None,
        }

        logger.debug("Starting intelligence run", run_id=run_id, product_id=product_id)

        try:
            final_state = await self._graph.ainvoke(initial_state)
        except (PipelineError, ProductNotFoundError):
            raise
        except Exception as e:
            logger.error("Intelligence run failed", run_id=run_id, product_id=product_id, error=str(e))
            raise PipelineError(
                message=f"Unexpected pipeline error: {e}",
                details={"run_id": run_id, "product_id": product_id},
            ) from e

        report_data = final_state.get("report")
        if not report_data:
            raise PipelineError(
                message="Pipeline completed but no report was generated",
                details={"run_id": run_id, "product_id": product_id},
            )

        logger.info(
            "Intelligence run completed",
            run_id=run_id,
            product_id=product_id,
            data_status=final_state.get("data_status"),
            duration_ms=sum(final_state.get("step_timings", {}).values()),
        )
        return IntelligenceReport.model_validate(report_data)


__all__ = ["IntelligencePipeline", "IntelligenceStateDict", "track_timing"]

"""
Rules service facade.

Wires configuration, logging, the rule store, batch assignment and the
priority rewriter into the operations the HTTP layer calls.
"""

from typing import Mapping, Optional, Sequence

from shared.config import ServiceConfig, get_config
from shared.errors import RuleEngineException
from shared.logging import configure_logging, get_logger, set_request_id
from shared.metrics import MetricsCollector, get_metrics_collector

from .assignment.batch import AssignmentBatch, ProgressCallback
from .assignment.executor import AssignmentExecutor
from .persistence.postgres import PostgreSQLRecordSource, PostgreSQLRuleStore
from .persistence.store import RecordSource, RuleStore
from .priorities.rewriter import TwoPhasePriorityRewriter
from .rules.fields import Record
from .rules.matcher import RuleMatcher
from .rules.models import (
    BatchResult, PriorityReorderRequest, PriorityUpdate, ReorderResult, Rule,
    RuleCreateRequest, RuleSetKind, RuleUpdateRequest
)
from .rules.resolver import PriorityResolver


class RulesService:
    """Customer and rate rule operations over one rule store."""

    def __init__(
        self,
        store: RuleStore,
        config: Optional[ServiceConfig] = None,
        record_source: Optional[RecordSource] = None,
        customer_lookup: Optional[Mapping[str, str]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or get_config()
        self.logger = get_logger("rules.service")
        self.metrics = metrics or get_metrics_collector(self.config.service_name)
        self.store = store

        self.resolver = PriorityResolver(RuleMatcher(metrics=self.metrics))
        self.executor = AssignmentExecutor(
            precision=self.config.rate_amount_precision,
            default_currency=self.config.default_currency,
            customer_lookup=customer_lookup,
        )
        self.batch = AssignmentBatch(
            resolver=self.resolver,
            executor=self.executor,
            store=store,
            record_source=record_source,
            write_batch_size=self.config.assignment_batch_size,
            record_page_size=self.config.record_page_size,
            metrics=self.metrics,
        )
        self.rewriter = TwoPhasePriorityRewriter(
            store,
            stage_offset=self.config.priority_stage_offset,
            start=self.config.priority_start,
            metrics=self.metrics,
        )

    @classmethod
    async def from_config(cls, config: Optional[ServiceConfig] = None) -> "RulesService":
        """Build a service backed by PostgreSQL."""
        config = config or get_config()
        configure_logging(config.service_name, config.log_level)

        store = PostgreSQLRuleStore(
            config.postgres_dsn,
            min_size=config.postgres_min_pool,
            max_size=config.postgres_max_pool,
            command_timeout=config.command_timeout,
        )
        await store.start()

        service = cls(store, config=config, record_source=PostgreSQLRecordSource(store))
        if config.metrics_port:
            service.metrics.start_metrics_server(config.metrics_port)
        return service

    async def close(self) -> None:
        if isinstance(self.store, PostgreSQLRuleStore):
            await self.store.stop()

    async def list_rules(self, rule_set: RuleSetKind) -> Sequence[Rule]:
        return await self.store.list_rules(rule_set)

    async def create_rule(self, request: RuleCreateRequest) -> Rule:
        return await self.store.create_rule(request)

    async def update_rule(self, rule_set: RuleSetKind, rule_id: str, request: RuleUpdateRequest) -> Rule:
        return await self.store.update_rule(rule_set, rule_id, request)

    async def delete_rule(self, rule_set: RuleSetKind, rule_id: str) -> bool:
        return await self.store.delete_rule(rule_set, rule_id)

    async def toggle_rule(self, rule_set: RuleSetKind, rule_id: str, is_active: bool) -> Rule:
        return await self.store.toggle_active(rule_set, rule_id, is_active)

    async def execute_rules(
        self,
        rule_set: RuleSetKind,
        records: Optional[Sequence[Record]] = None,
        *,
        dry_run: bool = False,
        rule_ids: Optional[Sequence[str]] = None,
        progress: Optional[ProgressCallback] = None,
        skip_assigned: bool = False,
        request_id: Optional[str] = None,
    ) -> BatchResult:
        """Assign customers or rates to records. Data-quality problems never raise."""
        set_request_id(request_id)
        return await self.batch.execute(
            rule_set,
            records,
            dry_run=dry_run,
            rule_ids=rule_ids,
            progress=progress,
            skip_assigned=skip_assigned,
        )

    async def preview(self, rule_set: RuleSetKind, record: Record) -> Sequence[Rule]:
        """Every active rule matching a record, in precedence order."""
        rules = await self.store.list_active_rules(rule_set)
        return self.resolver.resolve_all(rules, record)

    async def reorder_rules(
        self,
        rule_set: RuleSetKind,
        request: PriorityReorderRequest,
        request_id: Optional[str] = None,
    ) -> ReorderResult:
        """
        Persist a drag-and-drop order.

        On ``PriorityStageFailure`` or ``PriorityCommitFailure`` the caller
        must report that the order did not apply and re-fetch the rules.
        """
        set_request_id(request_id)
        try:
            return await self.rewriter.reorder(rule_set, request.rule_ids)
        except RuleEngineException as e:
            self.metrics.record_error(e.code)
            raise

    async def update_priorities(
        self,
        rule_set: RuleSetKind,
        updates: Sequence[PriorityUpdate],
        request_id: Optional[str] = None,
    ) -> ReorderResult:
        """Persist explicit ``{id, priority}`` pairs with the same two-phase protocol."""
        set_request_id(request_id)
        try:
            return await self.rewriter.reorder_positions(rule_set, updates)
        except RuleEngineException as e:
            self.metrics.record_error(e.code)
            raise

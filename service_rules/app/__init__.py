"""
Cargo billing rules service.

Assigns customers and rates to cargo/mail line items using ordered,
conditional rules, and persists drag-and-drop rule reordering safely
under a unique constraint on priority. It provides:

- app.rules: Field set, rule model, condition evaluation, matching and
  priority resolution.
- app.assignment: Outcome computation and batch execution.
- app.priorities: Two-phase priority rewriting.
- app.persistence: Rule store interfaces, in-memory and PostgreSQL stores.
- app.service: Facade used by the HTTP layer.

Guidelines:
- Matching is pure; only the batch runner and rewriter talk to the store.
- Per-record data problems are reported in results, never raised.
"""

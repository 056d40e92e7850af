"""
Settlement Module

Weekly commitment settlement and late-sync reconciliation:

- shared: constants, exceptions and week/grace timing
- domain: status enums and typed records
- model / repository: SQLAlchemy tables and the typed data-access layer
- external: Stripe wrapper and payment processor interface
- engine: candidate building, decision, charge execution, batch service
- reconciliation: late-sync flagging and the reconciliation worker
- endpoints: FastAPI routers
"""

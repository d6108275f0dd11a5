"""
Shop Payments - card-present payment orchestration for shops.

Layers:
- core: exceptions, records, value objects and interfaces
- domain: pricing, terminal rules and the payment state machine
- infrastructure: settings, Redis repositories, Stripe and the simulator
- application: services and the API facade
- web: FastAPI application and routers
"""

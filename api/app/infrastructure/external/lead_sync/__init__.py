"""
Integraciones externas del pipeline de sincronizacion de leads.

- Espejo remoto (tabulador): Postgres via psycopg, escrituras idempotentes por id.
- CRM upstream: API REST via requests, con paginacion y backoff.

Objetivos de diseño:
- Idempotencia: reaplicar un cambio no altera el resultado.
- Timeouts acotados: un remoto lento es un error transitorio, no un cuelgue.
- Errores traducidos a la taxonomia del pipeline (transitorio, permanente, schema).
"""

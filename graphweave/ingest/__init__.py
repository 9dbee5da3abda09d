# graphweave/ingest/__init__.py

"""cronspine command-line interface (Typer + rich).

Entry point: ``cronspine`` → :data:`cronspine.cli.app.app`.
"""

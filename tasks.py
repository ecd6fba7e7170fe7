from invoke import task

SOURCES = "src/review_engine tests tasks.py"


@task
def lint(c):
    c.run(f"ruff check {SOURCES}")


@task
def format(c):
    c.run(f"ruff format {SOURCES}")


@task
def format_check(c):
    c.run(f"ruff format --check {SOURCES}")


@task(help={"k": "Only run tests matching this expression"})
def test(c, k=""):
    c.run(f"pytest -k '{k}'" if k else "pytest")


@task(help={"config": "Engine config file"})
def init_db(c, config="config.yaml"):
    c.run(f"review-engine init-db {config}")


@task
def ci(c):
    lint(c)
    format_check(c)
    test(c)

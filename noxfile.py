import nox

PYTHONS = ["3.11", "3.12", "3.13"]


@nox.session(python=PYTHONS)
def tests(session):
    """Unit and integration tests."""
    session.install(".[test]")
    session.run("pytest", "tests", "--ignore=tests/c_e2e", *session.posargs)


@nox.session(python=PYTHONS[-1])
def e2e(session):
    """Run the examples end to end."""
    session.install(".[test]")
    session.run("pytest", "tests/c_e2e", *session.posargs)

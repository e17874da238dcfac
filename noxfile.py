import nox.sessions

PYTHON_VERSIONS = ['3.8', '3.9', '3.10', '3.11', '3.12']


nox.options.reuse_existing_virtualenvs = True
nox.options.sessions = [
    'tests',
]


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.sessions.Session):
    """ Run all tests """
    session.install('-e', '.[tests]')

    # Test
    session.run('pytest', 'tests/', '--cov=mongomem')

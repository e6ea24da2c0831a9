import pytest

from sandbox.runtime import reset_shared_runtime


@pytest.fixture(autouse=True)
def fresh_shared_runtime():
    """Each test starts without a process-wide embedded runtime."""
    reset_shared_runtime()
    yield
    runtime = reset_shared_runtime()
    if runtime is not None:
        runtime.close()

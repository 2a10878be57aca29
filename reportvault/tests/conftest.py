import pytest

from reportvault.app.services.generator import ReportGenerator
from reportvault.app.services.signing import ReportSigner
from reportvault.app.services.storage import ReportStorage
from reportvault.tests.fixtures.report_factory import (
    GENERATION_TIME,
    TEST_SECRET,
    sample_data_source,
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def signer() -> ReportSigner:
    return ReportSigner(TEST_SECRET)


@pytest.fixture
def data_source():
    return sample_data_source()


@pytest.fixture
def generator(data_source, signer) -> ReportGenerator:
    return ReportGenerator(
        data_source=data_source,
        signer=signer,
        version="1.0",
        clock=lambda: GENERATION_TIME,
    )


@pytest.fixture
def storage(tmp_path, signer) -> ReportStorage:
    return ReportStorage(root=tmp_path / "pdf-storage", signer=signer)

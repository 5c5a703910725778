"""Shared fixtures for unit tests."""

import pytest
from nfe_samples import NAMESPACED_NFE, bare_nfe, det


@pytest.fixture
def namespaced_nfe_xml() -> str:
    """Complete NF-e wrapped in nfeProc with the portalfiscal namespace."""
    return NAMESPACED_NFE


@pytest.fixture
def minimal_nfe_xml() -> str:
    """Smallest namespace-free NF-e that parses successfully."""
    return bare_nfe(
        ide="<nNF>123</nNF><dhEmi>2024-03-15T10:30:00-03:00</dhEmi>",
        emit="<xNome>Acme Corp</xNome>",
        dets=det(xProd="Widget", qCom="2", vUnCom="5.00", vProd="10.00"),
    )

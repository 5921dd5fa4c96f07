"""
Shared fixtures: raw rows, CSV extracts and a fake HTTP session.
"""

import csv
from pathlib import Path

import pytest


HEADER = [
    'ANO_BO', 'NUM_BO', 'RUBRICA', 'DATA_OCORRENCIA_BO', 'HORA_OCORRENCIA',
    'NOME_MUNICIPIO', 'BAIRRO', 'NOME_DELEGACIA', 'LATITUDE', 'LONGITUDE',
    'DESCR_TIPO_VEICULO', 'DESCR_MARCA_VEICULO', 'DESC_COR_VEICULO',
    'ANO_FABRICACAO', 'AUTORIA_BO', 'FLAG_FLAGRANTE', 'ANO', 'MES',
]

DEFAULT_ROW = {
    'ANO_BO': '2024',
    'NUM_BO': '1',
    'RUBRICA': 'Roubo de veículo',
    'DATA_OCORRENCIA_BO': '15/03/2024',
    'HORA_OCORRENCIA': '14:30',
    'NOME_MUNICIPIO': 'S.PAULO',
    'BAIRRO': 'CENTRO',
    'NOME_DELEGACIA': '01º D.P. SE',
    'LATITUDE': '-23,5505',
    'LONGITUDE': '-46,6333',
    'DESCR_TIPO_VEICULO': 'AUTOMOVEL',
    'DESCR_MARCA_VEICULO': 'FIAT',
    'DESC_COR_VEICULO': 'Prata',
    'ANO_FABRICACAO': '2015',
    'AUTORIA_BO': 'Desconhecida',
    'FLAG_FLAGRANTE': 'N',
    'ANO': '2024',
    'MES': '3',
}


def build_row(**overrides):
    row = dict(DEFAULT_ROW)
    row.update(overrides)
    return row


@pytest.fixture
def make_row():
    """Raw source row with sensible defaults; keyword overrides per column."""
    return build_row


@pytest.fixture
def make_rows():
    """n rows for a given DD/MM/YYYY date, numbered from `start`."""
    def _make(n, day='15/03/2024', start=1, **overrides):
        return [build_row(NUM_BO=str(start + i), DATA_OCORRENCIA_BO=day, **overrides)
                for i in range(n)]
    return _make


@pytest.fixture
def write_csv():
    """Write rows as a ';'-separated extract with the standard header."""
    def _write(path: Path, rows, header=None):
        header = header or HEADER
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.writer(f, delimiter=';', lineterminator='\n')
            writer.writerow(header)
            for row in rows:
                writer.writerow([row.get(col) or '' for col in header])
        return path
    return _write


class FakeResponse:
    def __init__(self, status_code=200, content=b''):
        self.status_code = status_code
        self.content = content


class FakeSession:
    """
    Stand-in for requests.Session.

    Each get() pops the next scripted outcome: a FakeResponse is returned,
    an exception instance is raised.
    """

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append(url)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def recorded_sleep():
    """sleep() replacement that records the requested delays."""
    delays = []

    def _sleep(seconds):
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep

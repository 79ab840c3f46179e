import os
import sys
import tempfile

import pytest

# Ensure the packages are importable without installation
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Service configuration is read at import time
_TMP = tempfile.mkdtemp(prefix="echokey-tests-")
os.environ["ECHOKEY_ENV"] = "dev"
os.environ["ECHOKEY_SECRET"] = "SECRET"
os.environ["ECHOKEY_DB_PATH"] = os.path.join(_TMP, "echokey.db")
os.environ["AUDIT_SIGNING_KEY_PATH"] = os.path.join(_TMP, "audit_signing_key.json")
os.environ["ECHOKEY_LOG_JSON"] = "0"
os.environ["VALIDATE_RPM"] = "5"

from fastapi.testclient import TestClient

from echokey_api import main
from echokey_api.db import init_db, reset_db

init_db()


@pytest.fixture
def client():
    # Entering the client runs startup and keeps one event loop for background refresh tasks
    with TestClient(main.app) as c:
        reset_db()
        main.validate_limiter.reset()
        yield c

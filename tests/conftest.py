import os
import sys

import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `common.*`, `viewer.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


class FakeClock:
    def __init__(self, t: float = 0.0) -> None:
        self.t = t

    def __call__(self) -> float:  # acts like time.monotonic
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


class _FakeBody:
    def __init__(self, data: bytes) -> None:
        self._data = data

    def read(self) -> bytes:
        return self._data


class FakeS3:
    """In-memory stand-in for the handful of S3 calls the store makes."""

    def __init__(self) -> None:
        self.objects = {}  # (bucket, key) -> bytes
        self.calls = []

    def put(self, bucket: str, key: str, body: bytes) -> None:
        self.objects[(bucket, key)] = body

    def _missing(self, op: str):
        from botocore.exceptions import ClientError

        return ClientError({"Error": {"Code": "NoSuchKey" if op == "GetObject" else "404"}}, op)

    def head_object(self, *, Bucket: str, Key: str):
        self.calls.append(("head_object", Key))
        body = self.objects.get((Bucket, Key))
        if body is None:
            raise self._missing("HeadObject")
        return {"ContentLength": len(body), "ETag": f'"fake-{len(body)}"'}

    def get_object(self, *, Bucket: str, Key: str, Range: str | None = None):
        self.calls.append(("get_object", Key))
        body = self.objects.get((Bucket, Key))
        if body is None:
            raise self._missing("GetObject")
        if Range:
            start_s, end_s = Range[len("bytes="):].split("-")
            body = body[int(start_s): int(end_s) + 1]
        return {"Body": _FakeBody(body), "ContentLength": len(body)}

    def generate_presigned_url(self, op: str, *, Params, ExpiresIn: int):
        self.calls.append(("presign", Params["Key"]))
        return f"https://{Params['Bucket']}.s3.test/{Params['Key']}?X-Amz-Expires={ExpiresIn}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_s3() -> FakeS3:
    return FakeS3()

import io

from botocore.exceptions import ClientError
from botocore.response import StreamingBody


async def chunked(*parts):
    for p in parts:
        yield p


def object_files(store):
    return [p for p in store.objects.objects_dir.rglob("*") if p.is_file()]


# DOS stub whose e_lfanew points at a PE signature at 0x80
PE_HEAD = b"MZ\x90\x00" + b"\x00" * 56 + (0x80).to_bytes(4, "little") + b"\x00" * 0x40 + b"PE\x00\x00" + b"\x4c\x01"


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client; only the calls the store makes."""

    def __init__(self, fail_put=False):
        self.objects = {}
        self.content_types = {}
        self.fail_put = fail_put

    def _missing(self, op):
        return ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, op)

    def put_object(self, *, Bucket, Key, Body, ContentType):
        if self.fail_put:
            raise ClientError({"Error": {"Code": "SlowDown", "Message": "Reduce your request rate"}}, "PutObject")
        self.objects[(Bucket, Key)] = Body.read()
        self.content_types[(Bucket, Key)] = ContentType

    def head_object(self, *, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise self._missing("HeadObject")
        return {"ContentLength": len(self.objects[(Bucket, Key)])}

    def get_object(self, *, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise self._missing("GetObject")
        data = self.objects[(Bucket, Key)]
        return {"Body": StreamingBody(io.BytesIO(data), len(data))}

    def delete_object(self, *, Bucket, Key):
        self.objects.pop((Bucket, Key), None)

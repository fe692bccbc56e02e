import io
import json
import tarfile

import pytest


CJK_DIGITS = "零一二三四五六七八九"


def make_line(payload, fields=("1800000", "2023-01-01 00:00:00")):
    if not isinstance(payload, str):
        payload = json.dumps(payload, ensure_ascii=False)
    return "\t".join([*fields, payload])


def reply_line(*msgs, success=1):
    return make_line({"success": success, "response": {"item_data": [{"msg": m} for m in msgs]}})


def numbered_sentence(i):
    """A distinct sentence that passes every filter unchanged."""
    return "測試句子" + "".join(CJK_DIGITS[int(d)] for d in str(i)) + "號內容"


@pytest.fixture
def make_archive(tmp_path):
    """Write {member name: [lines]} into a .tar.xz and return its path."""

    def _make(members, name="replies.tar.xz", mode="w:xz", directories=()):
        path = tmp_path / name
        with tarfile.open(path, mode) as tf:
            for dirname in directories:
                info = tarfile.TarInfo(dirname)
                info.type = tarfile.DIRTYPE
                tf.addfile(info)
            for member, lines in members.items():
                data = "".join(line + "\n" for line in lines).encode("utf-8")
                info = tarfile.TarInfo(member)
                info.size = len(data)
                tf.addfile(info, io.BytesIO(data))
        return path

    return _make

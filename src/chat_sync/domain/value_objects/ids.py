from __future__ import annotations

import uuid
from typing import NewType

TempId = NewType("TempId", str)
ClientMsgId = NewType("ClientMsgId", str)


def new_temp_id() -> TempId:
    return TempId(f"tmp-{uuid.uuid4().hex}")


def new_client_msg_id() -> ClientMsgId:
    return ClientMsgId(str(uuid.uuid4()))

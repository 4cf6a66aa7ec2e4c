"""
epochrewards/payout/cosmos_tx.py

Protobuf encoding of signed THORChain transfers.

THORNode's broadcast_tx_sync takes a cosmos.tx.v1beta1.TxRaw. Only the
messages a single-signer MsgSend needs are described here, wire compatible
with the cosmos-sdk and thorchain definitions of the same names.
"""

from typing import Iterable

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "epochrewards.cosmos"

MSG_SEND_TYPE_URL = "/types.MsgSend"
SECP256K1_PUBKEY_TYPE_URL = "/cosmos.crypto.secp256k1.PubKey"

# cosmos.tx.signing.v1beta1.SignMode
SIGN_MODE_LEGACY_AMINO_JSON = 127

_F = descriptor_pb2.FieldDescriptorProto
REPEATED = True

# message -> [(field, number, scalar type or message name, repeated)]
MESSAGES = {
    "Any": [("type_url", 1, _F.TYPE_STRING), ("value", 2, _F.TYPE_BYTES)],
    "Coin": [("denom", 1, _F.TYPE_STRING), ("amount", 2, _F.TYPE_STRING)],
    "MsgSend": [
        ("from_address", 1, _F.TYPE_BYTES),
        ("to_address", 2, _F.TYPE_BYTES),
        ("amount", 3, "Coin", REPEATED),
    ],
    "PubKey": [("key", 1, _F.TYPE_BYTES)],
    "TxBody": [
        ("messages", 1, "Any", REPEATED),
        ("memo", 2, _F.TYPE_STRING),
        ("timeout_height", 3, _F.TYPE_UINT64),
    ],
    "ModeInfoSingle": [("mode", 1, _F.TYPE_INT32)],
    "ModeInfo": [("single", 1, "ModeInfoSingle")],
    "SignerInfo": [
        ("public_key", 1, "Any"),
        ("mode_info", 2, "ModeInfo"),
        ("sequence", 3, _F.TYPE_UINT64),
    ],
    "Fee": [
        ("amount", 1, "Coin", REPEATED),
        ("gas_limit", 2, _F.TYPE_UINT64),
        ("payer", 3, _F.TYPE_STRING),
        ("granter", 4, _F.TYPE_STRING),
    ],
    "AuthInfo": [("signer_infos", 1, "SignerInfo", REPEATED), ("fee", 2, "Fee")],
    "TxRaw": [
        ("body_bytes", 1, _F.TYPE_BYTES),
        ("auth_info_bytes", 2, _F.TYPE_BYTES),
        ("signatures", 3, _F.TYPE_BYTES, REPEATED),
    ],
}


def _file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="epochrewards/cosmos_tx.proto", package=PACKAGE, syntax="proto3",
    )
    for name, fields in MESSAGES.items():
        message = file_proto.message_type.add(name=name)
        for field_name, number, kind, *repeated in fields:
            field = message.field.add(name=field_name, number=number)
            field.label = _F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL
            if isinstance(kind, str):
                field.type = _F.TYPE_MESSAGE
                field.type_name = f".{PACKAGE}.{kind}"
            else:
                field.type = kind
    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_file_descriptor().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


Any = _message_class("Any")
Coin = _message_class("Coin")
MsgSend = _message_class("MsgSend")
PubKey = _message_class("PubKey")
TxBody = _message_class("TxBody")
ModeInfoSingle = _message_class("ModeInfoSingle")
ModeInfo = _message_class("ModeInfo")
SignerInfo = _message_class("SignerInfo")
Fee = _message_class("Fee")
AuthInfo = _message_class("AuthInfo")
TxRaw = _message_class("TxRaw")


# ============================================================================
# ENCODING
# ============================================================================

def msg_send(from_address: bytes, to_address: bytes, amount: int, denom: str):
    """MsgSend packed in an Any."""
    msg = MsgSend(
        from_address=from_address,
        to_address=to_address,
        amount=[Coin(denom=denom, amount=str(amount))],
    )
    return Any(type_url=MSG_SEND_TYPE_URL, value=msg.SerializeToString())


def body_bytes(messages: Iterable, memo: str) -> bytes:
    return TxBody(messages=list(messages), memo=memo).SerializeToString()


def auth_info_bytes(public_key: bytes, sequence: int, sign_mode: int, gas_limit: int = 0) -> bytes:
    """Single secp256k1 signer with an empty fee."""
    signer = SignerInfo(
        public_key=Any(type_url=SECP256K1_PUBKEY_TYPE_URL, value=PubKey(key=public_key).SerializeToString()),
        mode_info=ModeInfo(single=ModeInfoSingle(mode=sign_mode)),
        sequence=sequence,
    )
    return AuthInfo(signer_infos=[signer], fee=Fee(gas_limit=gas_limit)).SerializeToString()


def tx_raw(body: bytes, auth_info: bytes, signatures: Iterable[bytes]) -> bytes:
    return TxRaw(body_bytes=body, auth_info_bytes=auth_info, signatures=list(signatures)).SerializeToString()

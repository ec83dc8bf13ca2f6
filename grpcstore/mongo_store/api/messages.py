# mypy: ignore-errors
"""
Protobuf messages of the ``grpc_store`` service.

The message shapes mirror the grpc_store.proto contract that storage
callers speak. The file descriptor is assembled here and loaded into a
private descriptor pool, so no protoc step is needed:

    service grpc_store {
      rpc WriteIndex(WriteIndexRequest) returns (google.protobuf.Empty);
      rpc QueryIndex(QueryIndexRequest) returns (stream QueryIndexResponse);
      rpc DeleteIndex(DeleteIndexRequest) returns (google.protobuf.Empty);
      rpc PutChunks(PutChunksRequest) returns (google.protobuf.Empty);
      rpc GetChunks(GetChunksRequest) returns (stream GetChunksResponse);
      rpc DeleteChunks(ChunkID) returns (google.protobuf.Empty);
      rpc ListTables(google.protobuf.Empty) returns (ListTablesResponse);
      rpc CreateTable(CreateTableRequest) returns (google.protobuf.Empty);
      rpc DeleteTable(DeleteTableRequest) returns (google.protobuf.Empty);
      rpc DescribeTable(DescribeTableRequest) returns (DescribeTableResponse);
      rpc UpdateTable(UpdateTableRequest) returns (google.protobuf.Empty);
      rpc Stop(google.protobuf.Empty) returns (google.protobuf.Empty);
    }

How to change safely:
    - Never renumber or retype an existing field
    - New fields get new numbers and must be optional for old callers
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.empty_pb2 import Empty

PACKAGE = "grpc"
SERVICE_NAME = f"{PACKAGE}.grpc_store"

_F = descriptor_pb2.FieldDescriptorProto

STRING = _F.TYPE_STRING
BYTES = _F.TYPE_BYTES
BOOL = _F.TYPE_BOOL
INT64 = _F.TYPE_INT64
MESSAGE = _F.TYPE_MESSAGE

# (message, [(field, number, type, repeated, message type)])
_MESSAGES = [
    ("IndexEntry", [
        ("tableName", 1, STRING, False, None),
        ("hashValue", 2, STRING, False, None),
        ("rangeValue", 3, BYTES, False, None),
        ("value", 4, BYTES, False, None),
    ]),
    ("WriteIndexRequest", [("writes", 1, MESSAGE, True, "IndexEntry")]),
    ("DeleteIndexRequest", [("deletes", 1, MESSAGE, True, "IndexEntry")]),
    ("QueryIndexRequest", [
        ("tableName", 1, STRING, False, None),
        ("hashValue", 2, STRING, False, None),
        ("rangeValuePrefix", 3, BYTES, False, None),
        ("rangeValueStart", 4, BYTES, False, None),
        ("valueEqual", 5, BYTES, False, None),
        ("immutable", 6, BOOL, False, None),
    ]),
    ("Row", [
        ("rangeValue", 1, BYTES, False, None),
        ("value", 2, BYTES, False, None),
    ]),
    ("QueryIndexResponse", [("rows", 1, MESSAGE, True, "Row")]),
    ("Chunk", [
        ("encoded", 1, BYTES, False, None),
        ("key", 2, STRING, False, None),
        ("tableName", 3, STRING, False, None),
    ]),
    ("ChunkID", [("chunkID", 1, STRING, False, None)]),
    ("PutChunksRequest", [("chunks", 1, MESSAGE, True, "Chunk")]),
    ("GetChunksRequest", [("chunks", 1, MESSAGE, True, "Chunk")]),
    ("GetChunksResponse", [("chunks", 1, MESSAGE, True, "Chunk")]),
    ("TableDesc", [
        ("name", 1, STRING, False, None),
        ("useOnDemandIOMode", 2, BOOL, False, None),
        ("provisionedRead", 3, INT64, False, None),
        ("provisionedWrite", 4, INT64, False, None),
        ("tags", 5, MESSAGE, True, "TableDesc.TagsEntry"),
    ]),
    ("ListTablesResponse", [("tableNames", 1, STRING, True, None)]),
    ("CreateTableRequest", [("desc", 1, MESSAGE, False, "TableDesc")]),
    ("DeleteTableRequest", [("tableName", 1, STRING, False, None)]),
    ("DescribeTableRequest", [("tableName", 1, STRING, False, None)]),
    ("DescribeTableResponse", [
        ("desc", 1, MESSAGE, False, "TableDesc"),
        ("isActive", 2, BOOL, False, None),
    ]),
    ("UpdateTableRequest", [
        ("current", 1, MESSAGE, False, "TableDesc"),
        ("expected", 2, MESSAGE, False, "TableDesc"),
    ]),
]


def _add_field(message: descriptor_pb2.DescriptorProto, name, number, kind, repeated, type_name):
    field = message.field.add(name=name, number=number, type=kind, json_name=name)
    field.label = _F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL
    if type_name:
        field.type_name = f".{PACKAGE}.{type_name}"


def build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    """Assemble the grpc_store.proto file descriptor."""
    proto = descriptor_pb2.FileDescriptorProto(
        name="grpc_store.proto",
        package=PACKAGE,
        syntax="proto3",
    )

    for name, fields in _MESSAGES:
        message = proto.message_type.add(name=name)
        for spec in fields:
            _add_field(message, *spec)

        if name == "TableDesc":
            # map<string, string> tags = 5;
            entry = message.nested_type.add(name="TagsEntry")
            entry.options.map_entry = True
            _add_field(entry, "key", 1, STRING, False, None)
            _add_field(entry, "value", 2, STRING, False, None)

    return proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(build_file_descriptor().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


IndexEntry = _message_class("IndexEntry")
WriteIndexRequest = _message_class("WriteIndexRequest")
DeleteIndexRequest = _message_class("DeleteIndexRequest")
QueryIndexRequest = _message_class("QueryIndexRequest")
Row = _message_class("Row")
QueryIndexResponse = _message_class("QueryIndexResponse")
Chunk = _message_class("Chunk")
ChunkID = _message_class("ChunkID")
PutChunksRequest = _message_class("PutChunksRequest")
GetChunksRequest = _message_class("GetChunksRequest")
GetChunksResponse = _message_class("GetChunksResponse")
TableDesc = _message_class("TableDesc")
ListTablesResponse = _message_class("ListTablesResponse")
CreateTableRequest = _message_class("CreateTableRequest")
DeleteTableRequest = _message_class("DeleteTableRequest")
DescribeTableRequest = _message_class("DescribeTableRequest")
DescribeTableResponse = _message_class("DescribeTableResponse")
UpdateTableRequest = _message_class("UpdateTableRequest")

# method name -> (request class, response class, server streaming)
METHODS = {
    "WriteIndex": (WriteIndexRequest, Empty, False),
    "QueryIndex": (QueryIndexRequest, QueryIndexResponse, True),
    "DeleteIndex": (DeleteIndexRequest, Empty, False),
    "PutChunks": (PutChunksRequest, Empty, False),
    "GetChunks": (GetChunksRequest, GetChunksResponse, True),
    "DeleteChunks": (ChunkID, Empty, False),
    "ListTables": (Empty, ListTablesResponse, False),
    "CreateTable": (CreateTableRequest, Empty, False),
    "DeleteTable": (DeleteTableRequest, Empty, False),
    "DescribeTable": (DescribeTableRequest, DescribeTableResponse, False),
    "UpdateTable": (UpdateTableRequest, Empty, False),
    "Stop": (Empty, Empty, False),
}


def method_path(method: str) -> str:
    """Full RPC path of a service method, e.g. ``/grpc.grpc_store/WriteIndex``."""
    return f"/{SERVICE_NAME}/{method}"

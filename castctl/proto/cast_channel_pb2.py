# -*- coding: utf-8 -*-
# Generated by the protocol buffer compiler.  DO NOT EDIT!
# source: cast_channel.proto
"""Generated protocol buffer code."""
from google.protobuf import descriptor as _descriptor
from google.protobuf import descriptor_pool as _descriptor_pool
from google.protobuf import symbol_database as _symbol_database
from google.protobuf.internal import builder as _builder
# @@protoc_insertion_point(imports)

_sym_db = _symbol_database.Default()




DESCRIPTOR = _descriptor_pool.Default().AddSerializedFile(b'\n\x12cast_channel.proto\x12\x14castctl.cast_channel"\xd5\x02\n\x0bCastMessage\x12K\n\x10protocol_version\x18\x01 \x01(\x0e21.castctl.cast_channel.CastMessage.ProtocolVersion\x12\x11\n\tsource_id\x18\x02 \x01(\t\x12\x16\n\x0edestination_id\x18\x03 \x01(\t\x12\x11\n\tnamespace\x18\x04 \x01(\t\x12C\n\x0cpayload_type\x18\x05 \x01(\x0e2-.castctl.cast_channel.CastMessage.PayloadType\x12\x14\n\x0cpayload_utf8\x18\x06 \x01(\t\x12\x16\n\x0epayload_binary\x18\x07 \x01(\x0c"!\n\x0fProtocolVersion\x12\x0e\n\nCASTV2_1_0\x10\x00"%\n\x0bPayloadType\x12\n\n\x06STRING\x10\x00\x12\n\n\x06BINARY\x10\x01')

_globals = globals()
_builder.BuildMessageAndEnumDescriptors(DESCRIPTOR, _globals)
_builder.BuildTopDescriptorsAndMessages(DESCRIPTOR, 'cast_channel_pb2', _globals)
if _descriptor._USE_C_DESCRIPTORS == False:
  DESCRIPTOR._options = None
  _globals['_CASTMESSAGE']._serialized_start=45
  _globals['_CASTMESSAGE']._serialized_end=386
  _globals['_CASTMESSAGE_PROTOCOLVERSION']._serialized_start=314
  _globals['_CASTMESSAGE_PROTOCOLVERSION']._serialized_end=347
  _globals['_CASTMESSAGE_PAYLOADTYPE']._serialized_start=349
  _globals['_CASTMESSAGE_PAYLOADTYPE']._serialized_end=386
# @@protoc_insertion_point(module_scope)

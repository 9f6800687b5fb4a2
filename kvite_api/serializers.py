"""
Serializers for API requests and responses.
"""
import base64
import binascii

from rest_framework import serializers

ENCODINGS = ('utf-8', 'base64')


def decode_value(value: str, encoding: str) -> bytes:
    """Turn a transported value into the bytes to store."""
    if encoding == 'base64':
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error:
            raise serializers.ValidationError({'value': 'Value is not valid base64.'})
    return value.encode('utf-8')


def encode_value(data: bytes) -> dict:
    """Render stored bytes as text, falling back to base64 for binary data."""
    try:
        return {'value': data.decode('utf-8'), 'encoding': 'utf-8'}
    except UnicodeDecodeError:
        return {'value': base64.b64encode(data).decode('ascii'), 'encoding': 'base64'}


class PutValueSerializer(serializers.Serializer):
    """Serializer for storing a value under a key."""
    value = serializers.CharField(allow_blank=True, trim_whitespace=False)
    encoding = serializers.ChoiceField(choices=ENCODINGS, default='utf-8')

    def validate(self, attrs):
        attrs['data'] = decode_value(attrs['value'], attrs['encoding'])
        return attrs


class OperationSerializer(serializers.Serializer):
    """Serializer for a single batch operation."""
    type = serializers.ChoiceField(choices=('put', 'get', 'delete'))
    bucket = serializers.CharField(max_length=255)
    key = serializers.CharField(max_length=255)
    value = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)
    encoding = serializers.ChoiceField(choices=ENCODINGS, default='utf-8')

    def validate(self, attrs):
        if attrs['type'] == 'put':
            if 'value' not in attrs:
                raise serializers.ValidationError({'value': 'A put operation needs a value.'})
            attrs['data'] = decode_value(attrs['value'], attrs['encoding'])
        return attrs


class BatchOperationSerializer(serializers.Serializer):
    """Serializer for batch operations."""
    operations = OperationSerializer(many=True, allow_empty=False)

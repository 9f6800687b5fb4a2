"""
API views for the kvite key-value store.
"""
import logging
from datetime import datetime

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status

import kvite
from kvite.exceptions import (
    EngineError,
    IllegalStateError,
    InvalidIdentifierError,
    InvalidKeyError,
    StoreError,
)

from .database_manager import database_manager
from .serializers import (
    BatchOperationSerializer,
    PutValueSerializer,
    encode_value,
)

logger = logging.getLogger(__name__)


def read_value(tx, bucket, key):
    """Read a key, treating a bucket without a table as empty."""
    if not tx.has_bucket(bucket):
        return None
    return tx.bucket(bucket).get(key)


def read_all(tx, bucket):
    if not tx.has_bucket(bucket):
        return {}
    return tx.bucket(bucket).get_all()


def delete_value(tx, bucket, key):
    if tx.has_bucket(bucket):
        tx.bucket(bucket).delete(key)


class BaseDatabaseView(APIView):
    """Base view with common functionality."""

    def get_database(self) -> kvite.Database:
        return database_manager.get_database()

    def handle_store_error(self, error: StoreError) -> Response:
        """Map kvite errors onto HTTP responses."""
        if isinstance(error, (InvalidKeyError, InvalidIdentifierError)):
            return Response({
                'error': type(error).__name__,
                'message': str(error)
            }, status=status.HTTP_400_BAD_REQUEST)

        elif isinstance(error, IllegalStateError):
            return Response({
                'error': 'IllegalStateError',
                'message': str(error)
            }, status=status.HTTP_409_CONFLICT)

        logger.error("Store failure: %s", error)
        return Response({
            'error': 'EngineError' if isinstance(error, EngineError) else 'InternalError',
            'message': str(error)
        }, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


class HealthCheckView(BaseDatabaseView):
    """Health check endpoint."""

    def get(self, request) -> Response:
        try:
            self.get_database().buckets()
        except StoreError as e:
            return Response({
                'status': 'unhealthy',
                'timestamp': datetime.now().isoformat(),
                'error': str(e)
            }, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response({
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'version': kvite.__version__,
            'store_status': 'operational'
        }, status=status.HTTP_200_OK)


class BucketListView(BaseDatabaseView):
    """List the buckets that hold at least one key."""

    def get(self, request) -> Response:
        try:
            names = self.get_database().buckets()
        except StoreError as e:
            return self.handle_store_error(e)

        return Response({'buckets': names}, status=status.HTTP_200_OK)


class BucketDetailView(BaseDatabaseView):
    """Dump every pair in a bucket."""

    def get(self, request, bucket: str) -> Response:
        try:
            items = self.get_database().transaction(lambda tx: read_all(tx, bucket))
        except StoreError as e:
            return self.handle_store_error(e)

        return Response({
            'bucket': bucket,
            'items': {key: encode_value(value) for key, value in items.items()},
            'count': len(items)
        }, status=status.HTTP_200_OK)


class KeyView(BaseDatabaseView):
    """Get, set or delete a single key."""

    def get(self, request, bucket: str, key: str) -> Response:
        try:
            value = self.get_database().transaction(lambda tx: read_value(tx, bucket, key))
        except StoreError as e:
            return self.handle_store_error(e)

        if value is None:
            return Response({
                'error': 'KeyNotFound',
                'message': f"Key '{key}' not found in bucket '{bucket}'"
            }, status=status.HTTP_404_NOT_FOUND)

        return Response({'bucket': bucket, 'key': key, **encode_value(value)}, status=status.HTTP_200_OK)

    def put(self, request, bucket: str, key: str) -> Response:
        serializer = PutValueSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data['data']
        try:
            self.get_database().transaction(lambda tx: tx.create_bucket_if_not_exists(bucket).put(key, data))
        except StoreError as e:
            return self.handle_store_error(e)

        return Response({
            'bucket': bucket,
            'key': key,
            'message': 'Key set successfully'
        }, status=status.HTTP_200_OK)

    def delete(self, request, bucket: str, key: str) -> Response:
        try:
            self.get_database().transaction(lambda tx: delete_value(tx, bucket, key))
        except StoreError as e:
            return self.handle_store_error(e)

        return Response({
            'bucket': bucket,
            'key': key,
            'message': 'Key deleted successfully'
        }, status=status.HTTP_200_OK)


class BatchOperationView(BaseDatabaseView):
    """Apply a list of operations in a single transaction."""

    def post(self, request) -> Response:
        serializer = BatchOperationSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        operations = serializer.validated_data['operations']

        def apply(tx):
            results = []
            for op in operations:
                result = {'type': op['type'], 'bucket': op['bucket'], 'key': op['key']}
                if op['type'] == 'put':
                    tx.create_bucket_if_not_exists(op['bucket']).put(op['key'], op['data'])
                elif op['type'] == 'delete':
                    delete_value(tx, op['bucket'], op['key'])
                else:
                    value = read_value(tx, op['bucket'], op['key'])
                    result['found'] = value is not None
                    if value is not None:
                        result.update(encode_value(value))
                results.append(result)
            return results

        try:
            results = self.get_database().transaction(apply)
        except StoreError as e:
            return self.handle_store_error(e)

        return Response({
            'results': results,
            'count': len(results)
        }, status=status.HTTP_200_OK)

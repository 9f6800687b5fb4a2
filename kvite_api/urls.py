"""
API URL configuration.
"""
from django.urls import path
from . import views

urlpatterns = [
    path('api/health/', views.HealthCheckView.as_view(), name='health-check'),

    # Buckets
    path('api/buckets/', views.BucketListView.as_view(), name='bucket-list'),
    path('api/buckets/<str:bucket>/', views.BucketDetailView.as_view(), name='bucket-detail'),

    # Key-value operations
    path('api/buckets/<str:bucket>/keys/<str:key>/', views.KeyView.as_view(), name='key-detail'),

    # Batch operations, applied in one transaction
    path('api/batch/', views.BatchOperationView.as_view(), name='batch-operations'),
]

from rest_framework import serializers

from .models import Country
from .store import SORT_ORDERS


class CountrySerializer(serializers.ModelSerializer):
    class Meta:
        model = Country
        fields = [
            'id', 'name', 'capital', 'region', 'population', 'currency_code',
            'exchange_rate', 'estimated_gdp', 'flag_url', 'last_refreshed_at'
        ]
        read_only_fields = fields


class CountryListQuerySerializer(serializers.Serializer):
    """Query parameters accepted by GET /countries."""
    region = serializers.CharField(required=False, allow_blank=True)
    currency = serializers.CharField(required=False, allow_blank=True)
    sort = serializers.ChoiceField(choices=sorted(SORT_ORDERS), required=False, allow_blank=True)
    page = serializers.IntegerField(required=False, default=1, min_value=1)
    limit = serializers.IntegerField(required=False, default=100, min_value=1, max_value=1000)

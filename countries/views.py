import logging

from django.http import FileResponse
from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from .exceptions import ConfigurationError, ExternalFetchFailed, NoValidData, PersistenceFailure
from .serializers import CountryListQuerySerializer, CountrySerializer
from .services import get_publisher, get_store, get_synchronizer

logger = logging.getLogger(__name__)


# ----------------------------
# POST /countries/refresh
# ----------------------------
@api_view(['POST'])
def refresh_countries(request):
    """
    Fetch both external sources and upsert every valid country in one
    transaction. The summary image is regenerated after the commit.
    """
    try:
        synchronizer = get_synchronizer()
    except ConfigurationError as e:
        logger.error("Refresh refused: %s", e)
        return Response({"error": str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    try:
        result = synchronizer.refresh()
    except ExternalFetchFailed as e:
        return Response(
            {"error": "External data source unavailable", "details": f"Could not fetch data from {e.endpoint}"},
            status=status.HTTP_503_SERVICE_UNAVAILABLE
        )
    except NoValidData:
        return Response({"error": "No valid country data found"}, status=status.HTTP_400_BAD_REQUEST)
    except PersistenceFailure:
        return Response({"error": "Internal server error"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response({
        "message": "Refresh successful",
        "countries_refreshed": result.accepted,
        "rejected": result.rejected,
        "last_refreshed_at": result.run_at,
    })


# ----------------------------
# GET /countries
# ----------------------------
@api_view(['GET'])
def list_countries(request):
    """
    List countries, with optional filters, sorting and pagination.
    Supports:
        - ?region=Asia
        - ?currency=USD
        - ?sort=gdp_desc|gdp_asc|population_desc|population_asc
        - ?page=2&limit=50
    """
    query = CountryListQuerySerializer(data=request.query_params)
    if not query.is_valid():
        return Response(
            {"error": "Validation failed", "details": query.errors},
            status=status.HTTP_400_BAD_REQUEST
        )

    params = query.validated_data
    limit = params['limit']
    countries = get_store().list_all(
        region=params.get('region') or None,
        currency=params.get('currency') or None,
        order=params.get('sort') or None,
        offset=(params['page'] - 1) * limit,
        limit=limit,
    )
    return Response(CountrySerializer(countries, many=True).data)


# ----------------------------
# GET /countries/:name
# DELETE /countries/:name
# ----------------------------
@api_view(['GET', 'DELETE'])
def country_detail(request, name):
    """
    Handle GET and DELETE for a single country by name (case-insensitive).
    """
    store = get_store()

    if request.method == 'DELETE':
        if not store.delete_by_name(name):
            return Response({"error": "Country not found"}, status=status.HTTP_404_NOT_FOUND)
        return Response({"message": "Country deleted successfully"})

    country = store.find_by_name(name)
    if country is None:
        return Response({"error": "Country not found"}, status=status.HTTP_404_NOT_FOUND)
    return Response(CountrySerializer(country).data)


# ----------------------------
# GET /status
# ----------------------------
@api_view(['GET'])
def status_view(request):
    """
    Return the current dataset statistics.
    """
    store_status = get_store().aggregate_status()
    return Response({
        "total_countries": store_status.total_count,
        "last_refreshed_at": store_status.last_refreshed_at,
    })


# ----------------------------
# GET /countries/image
# ----------------------------
@api_view(['GET'])
def get_summary_image(request):
    """
    Return the summary image (PNG) generated by the last successful refresh.
    """
    image_path = get_publisher().artifact_path

    if not image_path.is_file():
        return Response({"error": "Summary image not found"}, status=status.HTTP_404_NOT_FOUND)

    return FileResponse(open(image_path, 'rb'), content_type='image/png')

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import DeliveryAssignment, Order, RiderSession
from .serializers import (
    CourierActionSerializer,
    DeliveryAssignmentSerializer,
    HeartbeatSerializer,
    OrderSerializer,
    RegisterRiderSerializer,
    RiderSessionSerializer,
)
from .services import get_engine, rider_identity


def assignment_response(assignment, http_status=status.HTTP_200_OK):
    record = DeliveryAssignment.objects.get(pk=assignment.id)
    return Response(DeliveryAssignmentSerializer(record).data, status=http_status)


def rider_response(rider, http_status=status.HTTP_200_OK):
    record = RiderSession.objects.get(pk=rider.id)
    return Response(RiderSessionSerializer(record).data, status=http_status)


class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Orders are created and paid upstream. The only write here is the
    order-paid event that hands the order to the dispatcher.
    """
    queryset = Order.objects.select_related('store').all()
    serializer_class = OrderSerializer

    @action(detail=True, methods=['post'], url_path='dispatch')
    def dispatch_delivery(self, request, pk=None):
        """
        Create (or return) the delivery assignment for a paid order and offer it
        to the nearest free courier. Safe to call repeatedly.
        """
        assignment = get_engine().order_paid(pk)
        return assignment_response(assignment)


class RiderViewSet(viewsets.ViewSet):
    """
    Courier presence. The caller is whoever the request's device fingerprint says it is.
    """

    @action(detail=False, methods=['post'])
    def register(self, request):
        serializer = RegisterRiderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        engine = get_engine()
        identity = rider_identity(request)
        resumed = engine.riders.get_by_fingerprint(identity.fingerprint) is not None

        rider = engine.register_rider(
            identity,
            name=data['name'],
            phone=str(data['phone']),
            lat=data.get('lat'),
            lng=data.get('lng'),
        )
        return rider_response(rider, status.HTTP_200_OK if resumed else status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    def me(self, request):
        rider = get_engine().rider_for(rider_identity(request))
        return rider_response(rider)

    @action(detail=False, methods=['post'])
    def heartbeat(self, request):
        serializer = HeartbeatSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        engine = get_engine()
        rider = engine.rider_for(rider_identity(request))
        rider = engine.heartbeat(rider.id, data['lat'], data['lng'], available=data.get('available'))
        return rider_response(rider)

    @action(detail=False, methods=['get'], url_path='nearest-assignment')
    def nearest_assignment(self, request):
        """
        Courier poll: the courier's live assignment, or the nearest queued one
        offered to them now. 204 when there is nothing to do.
        """
        engine = get_engine()
        rider = engine.rider_for(rider_identity(request))
        assignment = engine.nearest_assignment(rider.id)
        if assignment is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        return assignment_response(assignment)


class AssignmentViewSet(mixins.RetrieveModelMixin, mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = DeliveryAssignmentSerializer

    def get_queryset(self):
        queryset = DeliveryAssignment.objects.all().order_by('created_at')
        order_id = self.request.query_params.get('order_id')
        if order_id:
            queryset = queryset.filter(order_id=order_id)
        return queryset

    @action(detail=True, methods=['post'], url_path='action')
    def courier_action(self, request, pk=None):
        """
        accept / picked_up / en_route / delivered / cancel, from the courier holding the assignment.
        """
        serializer = CourierActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        engine = get_engine()
        rider = engine.rider_for(rider_identity(request))
        assignment = engine.courier_action(
            pk,
            data['action'],
            lat=data.get('lat'),
            lng=data.get('lng'),
            proof_url=data.get('proof_url'),
            notes=data.get('notes'),
            rating=data.get('rating'),
            rider_session_id=rider.id,
        )
        return assignment_response(assignment)


class SweepView(APIView):
    """
    Scheduled trigger for the timeout sweep (cron hits this, or runs manage.py sweep_assignments).
    """

    def post(self, request):
        summary = get_engine().sweep()
        return Response(summary.to_dict())

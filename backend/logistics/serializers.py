from phonenumber_field.serializerfields import PhoneNumberField
from rest_framework import serializers

from dispatch.lifecycle import COURIER_ACTIONS
from .models import DeliveryAssignment, Order, RiderSession


class OrderSerializer(serializers.ModelSerializer):
    class Meta:
        model = Order
        fields = '__all__'
        read_only_fields = ['status']


class RiderSessionSerializer(serializers.ModelSerializer):
    class Meta:
        model = RiderSession
        # the fingerprint never leaves the server
        fields = ['id', 'rider_name', 'phone', 'current_lat', 'current_lng', 'is_available', 'last_seen_at', 'created_at']
        read_only_fields = fields


class DeliveryAssignmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = DeliveryAssignment
        fields = '__all__'
        read_only_fields = [f.name for f in DeliveryAssignment._meta.fields]


class RegisterRiderSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    phone = PhoneNumberField(region="NG")
    lat = serializers.FloatField(required=False, allow_null=True)
    lng = serializers.FloatField(required=False, allow_null=True)


class HeartbeatSerializer(serializers.Serializer):
    lat = serializers.FloatField()
    lng = serializers.FloatField()
    available = serializers.BooleanField(required=False, allow_null=True, default=None)


class CourierActionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=sorted(COURIER_ACTIONS))
    lat = serializers.FloatField(required=False, allow_null=True)
    lng = serializers.FloatField(required=False, allow_null=True)
    proof_url = serializers.URLField(required=False, allow_null=True, max_length=500)
    notes = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    # range is checked by the engine so the error shape matches other validation failures
    rating = serializers.IntegerField(required=False, allow_null=True)

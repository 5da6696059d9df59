import uuid

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone
from phonenumber_field.modelfields import PhoneNumberField


def _uuid_str():
    return str(uuid.uuid4())


class Store(models.Model):
    """
    A selling store. Its base location is the pickup point for every order it sells.
    Coordinates stay empty until the vendor configures them; such orders cannot be dispatched.
    """
    name = models.CharField(max_length=255)

    # Nigerian addressing relies heavily on landmarks
    address_text = models.TextField(blank=True, help_text="Landmark based address")

    lat = models.FloatField(blank=True, null=True)
    lng = models.FloatField(blank=True, null=True)

    def __str__(self):
        return self.name


class Order(models.Model):
    """
    Marketplace order, as far as delivery is concerned.
    Created and paid upstream; the dispatch engine only advances the delivery statuses.
    """
    class Status(models.TextChoices):
        PENDING = "pending", "Pending payment"
        PAID = "paid", "Paid"
        PREPARING = "preparing", "Preparing"
        DISPATCHED = "dispatched", "Dispatched"
        IN_TRANSIT = "in_transit", "In transit"
        DELIVERED = "delivered", "Delivered"
        DELIVERY_CANCELLED = "delivery_cancelled", "Delivery cancelled"

    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='orders')

    customer_name = models.CharField(max_length=255, blank=True)
    customer_phone = models.CharField(max_length=32, blank=True)

    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    # Precomputed upstream, carried onto the assignment untouched
    delivery_fee = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)

    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING)

    delivery_address = models.TextField(blank=True)
    # Coordinates where the rider needs to go
    delivery_lat = models.FloatField(blank=True, null=True)
    delivery_lng = models.FloatField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"Order #{self.id} - {self.status}"


class RiderSession(models.Model):
    """
    One courier device. No account: the session is keyed by a device fingerprint
    derived from network and client signals.
    """
    id = models.CharField(primary_key=True, max_length=36, default=_uuid_str, editable=False)
    device_fingerprint = models.CharField(max_length=64, unique=True)

    rider_name = models.CharField(max_length=255)
    phone = PhoneNumberField(region="NG")

    current_lat = models.FloatField(blank=True, null=True)
    current_lng = models.FloatField(blank=True, null=True)

    # is_available: flipped off by dispatch claims, back on by release
    is_available = models.BooleanField(default=True)
    last_seen_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        indexes = [
            models.Index(fields=["is_available", "last_seen_at"]),
        ]

    def __str__(self):
        return f"{self.rider_name} ({self.phone})"


class DeliveryAssignment(models.Model):
    """
    One row per order, never deleted. Status only changes through conditional
    updates issued by logistics.repositories.DjangoAssignmentStore.
    """
    class Status(models.TextChoices):
        QUEUED = "queued", "Queued"
        OFFERED = "offered", "Offered"
        ACCEPTED = "accepted", "Accepted"
        PICKED_UP = "picked_up", "Picked up"
        EN_ROUTE = "en_route", "En route"
        DELIVERED = "delivered", "Delivered"
        CANCELLED = "cancelled", "Cancelled"

    id = models.CharField(primary_key=True, max_length=36, default=_uuid_str, editable=False)

    # OneToOne gives the unique constraint on order_id
    order = models.OneToOneField(Order, on_delete=models.CASCADE, related_name='delivery_assignment')
    rider_session = models.ForeignKey(
        RiderSession, on_delete=models.SET_NULL, null=True, blank=True, related_name='assignments'
    )

    pickup_lat = models.FloatField()
    pickup_lng = models.FloatField()
    dropoff_lat = models.FloatField()
    dropoff_lng = models.FloatField()

    distance_km = models.FloatField(blank=True, null=True)
    route_distance_km = models.FloatField(blank=True, null=True)
    estimated_duration_minutes = models.PositiveIntegerField(blank=True, null=True)
    delivery_fee = models.DecimalField(max_digits=12, decimal_places=2, blank=True, null=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.QUEUED, db_index=True)

    offered_at = models.DateTimeField(blank=True, null=True)
    accepted_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(default=timezone.now)
    # set explicitly: queryset.update() bypasses auto_now
    updated_at = models.DateTimeField(default=timezone.now)

    proof_of_delivery_url = models.URLField(max_length=500, blank=True, null=True)
    delivery_notes = models.TextField(blank=True, null=True)
    customer_rating = models.PositiveSmallIntegerField(
        blank=True, null=True, validators=[MinValueValidator(1), MaxValueValidator(5)]
    )

    class Meta:
        indexes = [
            models.Index(fields=["status", "offered_at"]),
            models.Index(fields=["rider_session", "status"]),
        ]

    def __str__(self):
        return f"Assignment {self.id} for order #{self.order_id} - {self.status}"

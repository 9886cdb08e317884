from django.contrib import admin
from import_export import resources
from import_export.admin import ExportMixin
from .models import Ride, Booking

admin.site.site_header = "Carpooling Administration"
admin.site.site_title = "Carpooling Admin Portal"
admin.site.index_title = "Welcome to Carpooling Admin Portal"


# Export only: imports would write seats and status past the booking ledger
class RideResource(resources.ModelResource):
    class Meta:
        model = Ride
        fields = ('id', 'driver__username', 'origin_city', 'destination_city', 'departure_time',
                  'available_seats', 'price_per_seat', 'currency', 'status', 'created_at')
        export_order = fields


class BookingResource(resources.ModelResource):
    class Meta:
        model = Booking
        fields = ('id', 'ride__id', 'passenger__username', 'seats_booked', 'status',
                  'total_amount', 'booking_time')
        export_order = fields


class BookingInline(admin.TabularInline):
    model = Booking
    extra = 0
    fields = ('passenger', 'seats_booked', 'status', 'total_amount', 'booking_time')
    readonly_fields = fields
    can_delete = False


@admin.register(Ride)
class RideAdmin(ExportMixin, admin.ModelAdmin):
    resource_class = RideResource
    list_display = ('id', 'driver', 'origin_city', 'destination_city', 'departure_time',
                    'available_seats', 'seats_left', 'price_per_seat', 'status')
    list_filter = ('status', 'departure_time', 'currency')
    search_fields = ('driver__username', 'origin_city', 'destination_city', 'origin_address',
                     'destination_address')
    # Seats and status belong to the booking ledger
    readonly_fields = ('available_seats', 'status', 'version', 'created_at', 'updated_at')
    inlines = [BookingInline]
    list_per_page = 20

    fieldsets = (
        ('Driver', {
            'fields': ('driver',)
        }),
        ('Origin', {
            'fields': ('origin_address', 'origin_city', 'origin_latitude', 'origin_longitude')
        }),
        ('Destination', {
            'fields': ('destination_address', 'destination_city', 'destination_latitude',
                       'destination_longitude')
        }),
        ('Schedule & Pricing', {
            'fields': ('departure_time', 'estimated_arrival_time', 'available_seats',
                       'price_per_seat', 'currency', 'route_distance_km', 'route_duration_min')
        }),
        ('Vehicle', {
            'fields': ('vehicle_make', 'vehicle_model', 'vehicle_color', 'vehicle_plate_number')
        }),
        ('Preferences', {
            'fields': ('smoking_allowed', 'pets_allowed', 'music_preference', 'conversation_level',
                       'max_detour_km', 'notes')
        }),
        ('State', {
            'fields': ('status', 'version', 'created_at', 'updated_at')
        }),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).prefetch_related('bookings')

    @admin.display(description='Seats left')
    def seats_left(self, obj):
        return obj.remaining_seats()


@admin.register(Booking)
class BookingAdmin(ExportMixin, admin.ModelAdmin):
    resource_class = BookingResource
    list_display = ('id', 'ride', 'passenger', 'seats_booked', 'status', 'total_amount', 'booking_time')
    list_filter = ('status', 'booking_time')
    search_fields = ('passenger__username', 'ride__origin_city', 'ride__destination_city')
    readonly_fields = ('ride', 'passenger', 'seats_booked', 'status', 'total_amount', 'booking_time')
    list_per_page = 20

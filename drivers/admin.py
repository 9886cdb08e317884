from django.contrib import admin
from import_export import resources
from import_export.admin import ImportExportModelAdmin
from .models import DriverProfile, Vehicle


class DriverProfileResource(resources.ModelResource):
    class Meta:
        model = DriverProfile
        fields = ('id', 'user__username', 'license_number', 'license_expiry_date',
                  'license_state', 'license_verified', 'setup_date')
        export_order = fields


class VehicleInline(admin.TabularInline):
    model = Vehicle
    extra = 0


@admin.register(DriverProfile)
class DriverProfileAdmin(ImportExportModelAdmin):
    resource_class = DriverProfileResource
    list_display = ('user', 'license_number', 'license_state', 'license_verified', 'setup_date')
    list_filter = ('license_verified', 'license_state')
    search_fields = ('user__username', 'license_number')
    list_editable = ('license_verified',)
    inlines = [VehicleInline]
    list_per_page = 20

    fieldsets = (
        ('Driver Information', {
            'fields': ('user',)
        }),
        ('Driving License', {
            'fields': ('license_number', 'license_expiry_date', 'license_state', 'license_verified')
        }),
        ('Preferences', {
            'fields': ('smoking_allowed', 'pets_allowed', 'music_preference', 'conversation_level')
        }),
    )

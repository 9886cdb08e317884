from django.contrib import admin
from import_export import resources
from import_export.admin import ExportMixin
from .models import Profile, PassengerProfile


class ProfileResource(resources.ModelResource):
    class Meta:
        model = Profile
        fields = ('id', 'user__username', 'phone', 'city', 'rating_average', 'rating_count',
                  'rides_as_driver', 'rides_as_passenger', 'created_at')
        export_order = fields


@admin.register(Profile)
class ProfileAdmin(ExportMixin, admin.ModelAdmin):
    resource_class = ProfileResource
    list_display = ('user', 'phone', 'city', 'rating_average', 'rating_count',
                    'rides_as_driver', 'rides_as_passenger')
    search_fields = ('user__username', 'phone', 'city')
    readonly_fields = ('rating_average', 'rating_count', 'created_at', 'updated_at')
    list_per_page = 20


@admin.register(PassengerProfile)
class PassengerProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'smoking_tolerance', 'pet_tolerance', 'music_tolerance')
    search_fields = ('user__username',)

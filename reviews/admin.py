from django.contrib import admin
from import_export import resources
from import_export.admin import ExportMixin
from .models import Review
from .services import update_user_rating


class ReviewResource(resources.ModelResource):
    class Meta:
        model = Review
        fields = ('id', 'ride__id', 'reviewer__username', 'reviewee__username', 'review_type',
                  'overall_rating', 'comment', 'is_hidden', 'created_at')
        export_order = fields


@admin.register(Review)
class ReviewAdmin(ExportMixin, admin.ModelAdmin):
    resource_class = ReviewResource
    list_display = ('id', 'reviewer', 'reviewee', 'review_type', 'overall_rating', 'is_hidden', 'created_at')
    list_filter = ('review_type', 'overall_rating', 'is_hidden')
    search_fields = ('reviewer__username', 'reviewee__username', 'comment')
    readonly_fields = ('ride', 'reviewer', 'reviewee', 'review_type', 'created_at', 'updated_at')
    list_editable = ('is_hidden',)
    list_per_page = 20

    def save_model(self, request, obj, form, change):
        super().save_model(request, obj, form, change)
        # Hiding a review changes the reviewee's rating
        update_user_rating(obj.reviewee_id)

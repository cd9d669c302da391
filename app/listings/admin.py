from django.contrib import admin

from listings.models import Listing


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    list_display = ["id", "title", "seller", "price_amount", "currency", "status", "availability"]
    list_filter = ["status", "availability", "currency"]
    search_fields = ["id", "title", "seller__username"]
    raw_id_fields = ["seller"]

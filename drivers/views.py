# drivers/views.py
import logging
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from .models import DriverProfile
from .serializers import DriverProfileSerializer, DriverSetupSerializer, VehicleSerializer

logger = logging.getLogger(__name__)


class DriverProfileViewSet(viewsets.GenericViewSet):
    serializer_class = DriverProfileSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        # Drivers can only see their own profile
        return DriverProfile.objects.filter(user=self.request.user).prefetch_related('vehicles')

    def _own_profile(self):
        return self.get_queryset().first()

    @action(detail=False, methods=['get'], url_path='profile-status')
    def profile_status(self, request):
        """Whether the current user has set up a driver profile"""
        profile = self._own_profile()
        return Response({
            'success': True,
            'data': {
                'is_driver_profile_setup': profile is not None,
                'driver_profile': DriverProfileSerializer(profile).data if profile else None,
            }
        })

    @action(detail=False, methods=['post'], url_path='setup-profile')
    def setup_profile(self, request):
        """Set up the driver profile (first time only)"""
        serializer = DriverSetupSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        profile = serializer.save()
        logger.info(f"Driver profile set up for user {request.user.id}")
        return Response({
            'success': True,
            'message': 'Driver profile setup successfully',
            'data': DriverProfileSerializer(profile).data,
        }, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'], url_path='profile')
    def my_profile(self, request):
        """Get current driver's profile"""
        profile = self._own_profile()
        if profile is None:
            return Response({'success': False, 'message': 'Driver profile not found'},
                            status=status.HTTP_404_NOT_FOUND)
        return Response({'success': True, 'data': DriverProfileSerializer(profile).data})

    @action(detail=False, methods=['post'])
    def vehicles(self, request):
        """Add a vehicle to the driver profile"""
        profile = self._own_profile()
        if profile is None:
            return Response({'success': False, 'message': 'Driver profile must be setup first'},
                            status=status.HTTP_400_BAD_REQUEST)
        serializer = VehicleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        vehicle = profile.add_vehicle(dict(serializer.validated_data))
        return Response({'success': True, 'data': VehicleSerializer(vehicle).data},
                        status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['post'], url_path=r'vehicles/(?P<vehicle_id>\d+)/default')
    def set_default_vehicle(self, request, vehicle_id=None):
        """Make one of the driver's vehicles the default"""
        profile = self._own_profile()
        vehicle = profile.vehicles.filter(pk=vehicle_id).first() if profile else None
        if vehicle is None:
            return Response({'success': False, 'message': 'Vehicle not found'},
                            status=status.HTTP_404_NOT_FOUND)
        profile.vehicles.update(is_default=False)
        vehicle.is_default = True
        vehicle.save(update_fields=['is_default'])
        return Response({'success': True, 'data': VehicleSerializer(vehicle).data})

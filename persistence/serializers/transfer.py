from rest_framework import serializers


class ExportDocumentSerializer(serializers.Serializer):
    exportDate = serializers.CharField()
    version = serializers.CharField(max_length=16)
    storageInfo = serializers.DictField(required=False)
    data = serializers.DictField()


class ExportQuerySerializer(serializers.Serializer):
    download = serializers.BooleanField(required=False, default=False)

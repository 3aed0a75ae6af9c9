"""acmevault tests"""
